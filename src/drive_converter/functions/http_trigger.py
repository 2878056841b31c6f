"""HTTP trigger blueprint — health, manual run, provisioning and status endpoints."""

import json
import logging
from dataclasses import asdict

import azure.functions as func

from drive_converter import __version__
from drive_converter.config import load_config
from drive_converter.orchestration.engine import traversal_engine_from_config
from drive_converter.state.provisioning import provision_state, state_stores_from_config
from drive_converter.trace.recorder import BlobTraceRecorder

logger = logging.getLogger(__name__)

bp = func.Blueprint()


def _error_response(status_code: int, message: str) -> func.HttpResponse:
    body = json.dumps({"status": "error", "message": message})
    return func.HttpResponse(body, status_code=status_code, mimetype="application/json")


@bp.route(route="health", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def health_check(req: func.HttpRequest) -> func.HttpResponse:
    """Health check endpoint — returns service status and version."""
    logger.info("[health_check] health check requested")

    try:
        body = json.dumps({"status": "ok", "version": __version__})
        return func.HttpResponse(body, status_code=200, mimetype="application/json")

    except Exception:
        logger.error("[health_check] health check failed", exc_info=True)
        return _error_response(500, "Internal server error")


@bp.route(route="trigger", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
def manual_trigger(req: func.HttpRequest) -> func.HttpResponse:
    """Manual trigger endpoint — runs one traversal pass on demand.

    Requires a function key for authentication. Executes the same logic
    as the timer trigger but returns the run summary in the response.
    """
    logger.info("[manual_trigger] manual trigger requested")

    try:
        config = load_config()
        engine = traversal_engine_from_config(config)
        summary = engine.run()
        logger.info(
            "[manual_trigger] traversal pass complete; completed:%s;folders:%d",
            summary.completed,
            summary.folders_processed,
        )

        payload = {"status": "ok", "summary": asdict(summary)}
        recorder = engine.recorder
        if isinstance(recorder, BlobTraceRecorder):
            payload["trace_blob"] = recorder.blob
        body = json.dumps(payload)
        return func.HttpResponse(body, status_code=200, mimetype="application/json")

    except Exception:
        logger.error("[manual_trigger] manual trigger failed", exc_info=True)
        return _error_response(500, "Internal server error")


@bp.route(route="provision", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
def provision(req: func.HttpRequest) -> func.HttpResponse:
    """Create the queue and stack if absent and seed root folders.

    Expects a JSON body ``{"roots": ["<folder URL or ID>", ...]}``; an empty
    body only creates the resources.
    """
    logger.info("[provision] provisioning requested")

    try:
        raw = req.get_body()
        data = json.loads(raw) if raw else {}
        roots = data.get("roots", []) if isinstance(data, dict) else None
        if not isinstance(roots, list) or not all(isinstance(r, str) for r in roots):
            return _error_response(400, "Body must be {\"roots\": [<string>, ...]}")
    except ValueError:
        return _error_response(400, "Body must be valid JSON")

    try:
        config = load_config()
        queue_store, stack_store = state_stores_from_config(config)
        seeded = provision_state(queue_store, stack_store, roots)
        body = json.dumps({"status": "ok", "seeded": seeded})
        return func.HttpResponse(body, status_code=200, mimetype="application/json")

    except Exception:
        logger.error("[provision] provisioning failed", exc_info=True)
        return _error_response(500, "Internal server error")


@bp.route(route="status", methods=["GET"], auth_level=func.AuthLevel.FUNCTION)
def traversal_status(req: func.HttpRequest) -> func.HttpResponse:
    """Report the folders still queued and staged."""
    logger.info("[traversal_status] status requested")

    try:
        config = load_config()
        queue_store, stack_store = state_stores_from_config(config)
        queued = queue_store.values()
        staged = stack_store.values()
        body = json.dumps(
            {
                "status": "ok",
                "queued": queued,
                "staged": staged,
                "done": not queued and not staged,
            }
        )
        return func.HttpResponse(body, status_code=200, mimetype="application/json")

    except Exception:
        logger.error("[traversal_status] status failed", exc_info=True)
        return _error_response(500, "Internal server error")
