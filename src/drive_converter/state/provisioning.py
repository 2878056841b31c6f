"""One-time resource provisioning for the durable traversal state."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from drive_converter.state.queue import QUEUE_HEADER
from drive_converter.state.stack import STACK_HEADER
from drive_converter.state.store import BlobLinearStore

if TYPE_CHECKING:
    from drive_converter.config import AppConfig
    from drive_converter.state.store import LinearStore

logger = logging.getLogger(__name__)


def provision_state(
    queue_store: LinearStore,
    stack_store: LinearStore,
    roots: Iterable[str] = (),
) -> int:
    """Create the queue and stack headers if absent and seed root locators.

    Safe to call repeatedly: headers are only written when missing and
    existing queue entries are never touched. Roots are appended as given
    (URL or bare ID); blank entries are ignored.

    Args:
        queue_store: Store backing the folder queue.
        stack_store: Store backing the folder stack.
        roots: Folder URLs or IDs to enqueue.

    Returns:
        Number of root locators seeded.
    """
    queue_store.ensure_header(QUEUE_HEADER)
    stack_store.ensure_header(STACK_HEADER)

    seeded = 0
    for root in roots:
        locator = root.strip()
        if not locator:
            continue
        queue_store.append(locator)
        seeded += 1
    logger.info("[provision_state] provisioned traversal state; seeded:%d", seeded)
    return seeded


def state_stores_from_config(config: AppConfig) -> tuple[BlobLinearStore, BlobLinearStore]:
    """Construct the (queue, stack) blob stores from application configuration.

    The queue and stack are kept in separate blobs of the same container.

    Args:
        config: Application configuration instance.

    Returns:
        Tuple of (queue_store, stack_store).
    """
    queue_store = BlobLinearStore(
        storage_connection_string=config.storage_connection_string,
        container=config.state_container,
        blob=config.queue_blob,
    )
    stack_store = BlobLinearStore(
        storage_connection_string=config.storage_connection_string,
        container=config.state_container,
        blob=config.stack_blob,
    )
    return queue_store, stack_store
