"""Application configuration loaded from environment variables."""

import os
from dataclasses import dataclass

DEFAULT_CONVERTIBLE_EXTENSIONS = ("doc", "docx", "xls", "xlsx", "ppt", "pptx")

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True)
class AppConfig:
    """Centralized application configuration.

    Required fields have no defaults and will cause a KeyError at startup
    if the corresponding environment variable is missing. Domain constants
    have sensible defaults but can be overridden via environment variables.
    """

    # Required — no defaults, fail at startup if missing
    client_id: str
    client_secret: str
    tenant_id: str
    drive_user: str
    storage_connection_string: str

    # Durable traversal state
    state_container: str = "drive-converter-state"
    queue_blob: str = "folder-queue.txt"
    stack_blob: str = "folder-stack.txt"
    trace_blob_prefix: str = "traces/"

    # Traversal behaviour
    conversion_enabled: bool = False
    trace_all_files: bool = True
    convertible_extensions: tuple[str, ...] = DEFAULT_CONVERTIBLE_EXTENSIONS
    target_format: str = "pdf"
    staging_folder: str = "drive-converter-staging"
    max_run_seconds: float = 240.0


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean flag; unset means ``default``."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_extensions(name: str) -> tuple[str, ...]:
    """Read a comma-separated extension list, normalised to lowercase without dots."""
    raw = os.environ.get(name)
    if raw is None:
        return DEFAULT_CONVERTIBLE_EXTENSIONS
    return tuple(ext.strip().lstrip(".").lower() for ext in raw.split(",") if ext.strip())


def load_config() -> AppConfig:
    """Construct an AppConfig from environment variables.

    Required environment variables:
        DC_CLIENT_ID: Azure AD application (client) ID.
        DC_CLIENT_SECRET: Azure AD application client secret.
        DC_TENANT_ID: Azure AD tenant ID.
        DC_DRIVE_USER: UPN or object ID of the OneDrive user whose tree is traversed.
        AzureWebJobsStorage: Azure Storage account connection string.

    Optional environment variables (with defaults):
        DC_STATE_CONTAINER: Blob container holding queue, stack and traces.
        DC_QUEUE_BLOB: Blob path of the folder queue.
        DC_STACK_BLOB: Blob path of the folder stack.
        DC_TRACE_BLOB_PREFIX: Prefix for per-run trace blobs (default: traces/).
        DC_CONVERSION_ENABLED: Actually convert files (default: false, trace only).
        DC_TRACE_ALL_FILES: Record every visited file, not only conversions (default: true).
        DC_CONVERTIBLE_EXTENSIONS: Comma-separated extensions to convert.
        DC_TARGET_FORMAT: Graph conversion format (default: pdf).
        DC_STAGING_FOLDER: Drive folder where converted uploads land before the move.
        DC_MAX_RUN_SECONDS: Soft time budget per run (default: 240).

    Returns:
        Configured AppConfig instance.
    """
    return AppConfig(
        client_id=os.environ["DC_CLIENT_ID"],
        client_secret=os.environ["DC_CLIENT_SECRET"],
        tenant_id=os.environ["DC_TENANT_ID"],
        drive_user=os.environ["DC_DRIVE_USER"],
        storage_connection_string=os.environ["AzureWebJobsStorage"],  # noqa: SIM112
        state_container=os.environ.get("DC_STATE_CONTAINER", "drive-converter-state"),
        queue_blob=os.environ.get("DC_QUEUE_BLOB", "folder-queue.txt"),
        stack_blob=os.environ.get("DC_STACK_BLOB", "folder-stack.txt"),
        trace_blob_prefix=os.environ.get("DC_TRACE_BLOB_PREFIX", "traces/"),
        conversion_enabled=_env_bool("DC_CONVERSION_ENABLED", False),
        trace_all_files=_env_bool("DC_TRACE_ALL_FILES", True),
        convertible_extensions=_env_extensions("DC_CONVERTIBLE_EXTENSIONS"),
        target_format=os.environ.get("DC_TARGET_FORMAT", "pdf"),
        staging_folder=os.environ.get("DC_STAGING_FOLDER", "drive-converter-staging"),
        max_run_seconds=float(os.environ.get("DC_MAX_RUN_SECONDS", "240")),
    )
