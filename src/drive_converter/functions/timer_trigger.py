"""Timer trigger blueprint — scheduled entry point for the resumable traversal."""

import logging

import azure.functions as func

from drive_converter.config import load_config
from drive_converter.orchestration.engine import traversal_engine_from_config

logger = logging.getLogger(__name__)

bp = func.Blueprint()


@bp.timer_trigger(
    schedule="0 */5 * * * *",
    arg_name="timer",
    run_on_startup=False,
)
def timer_trigger(timer: func.TimerRequest) -> None:
    """Scheduled trigger that continues the folder traversal.

    Runs every 5 minutes. Each run picks up from the persisted queue and
    stack, so a run cut short by the host timeout is continued by the next.
    """
    logger.info("Timer trigger fired")

    try:
        if timer.past_due:
            logger.warning("Timer trigger is past due")

        config = load_config()
        engine = traversal_engine_from_config(config)
        summary = engine.run()
        if summary.completed:
            logger.info(
                "Traversal complete — %d folder(s), %d conversion(s)",
                summary.folders_processed,
                summary.files_converted,
            )
        else:
            logger.info(
                "Traversal paused — %d folder(s) this run, continuing next schedule",
                summary.folders_processed,
            )

    except Exception:
        logger.exception("Timer trigger failed")
        raise
