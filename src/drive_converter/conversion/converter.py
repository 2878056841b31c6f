"""Office-to-target-format conversion through the Graph content endpoint."""

from __future__ import annotations

import logging
import mimetypes
from collections.abc import Iterable
from typing import TYPE_CHECKING

from drive_converter.graph.client import GraphApiError, GraphAuthError
from drive_converter.graph.models import file_extension

if TYPE_CHECKING:
    from drive_converter.config import AppConfig
    from drive_converter.graph.drive import DriveProvider
    from drive_converter.graph.models import DriveFile

logger = logging.getLogger(__name__)

DEFAULT_TARGET_FORMAT = "pdf"


class ConversionError(Exception):
    """Raised when a single file cannot be converted."""

    def __init__(self, file_name: str, reason: str) -> None:
        super().__init__(f"Conversion of {file_name!r} failed: {reason}")
        self.file_name = file_name
        self.reason = reason


def is_convertible(name: str, extensions: Iterable[str]) -> bool:
    """Return True when the file name's extension is in ``extensions``.

    Matching is case-insensitive. A name without a period, or ending in one,
    has an empty extension and never matches.
    """
    extension = file_extension(name)
    if not extension:
        return False
    return extension in {ext.lower() for ext in extensions}


class GraphConverter:
    """Converts drive files and places the result next to the original.

    The converted rendition is requested from Graph, uploaded into a staging
    folder, then moved into the original's parent folder and renamed to the
    original base name. No retries: a failure is reported to the caller and
    the traversal carries on with the next file.
    """

    def __init__(
        self,
        drive: DriveProvider,
        staging_folder: str,
        target_format: str = DEFAULT_TARGET_FORMAT,
    ) -> None:
        """Initialise the converter.

        Args:
            drive: Provider used to fetch the rendition and upload, move and
                rename the result.
            staging_folder: Drive path (below root) receiving converted uploads.
            target_format: Graph ``format`` query value, e.g. "pdf".
        """
        self._drive = drive
        self._staging_folder = staging_folder
        self._target_format = target_format
        self._mime_type = (
            mimetypes.types_map.get(f".{target_format}") or "application/octet-stream"
        )

    def convert(self, file: DriveFile) -> DriveFile:
        """Convert one file.

        Args:
            file: The source file.

        Returns:
            The converted file, located in the source file's parent folder.

        Raises:
            ConversionError: If any step of the conversion fails.
        """
        logger.info(
            "[convert] converting file; file_id:%s;name:%s;mime_type:%s;format:%s",
            file.id,
            file.name,
            file.mime_type,
            self._target_format,
        )
        uploaded: DriveFile | None = None
        try:
            content = self._drive.get_converted_content(file, self._target_format)
            uploaded = self._drive.upload_file(
                self._staging_folder,
                f"{file.id}.{self._target_format}",
                content,
                self._mime_type,
            )
            moved = self._drive.move_file(uploaded, file.parent_id)
            converted = self._drive.rename_file(moved, file.base_name)
        except (GraphApiError, GraphAuthError) as exc:
            logger.error("[convert] conversion failed; file_id:%s;error:%s", file.id, exc)
            reason = str(exc)
            if uploaded is not None:
                # the upload, possibly already moved, has to be cleaned up by hand
                logger.error(
                    "[convert] converted copy left behind; file_id:%s;item_id:%s;name:%s",
                    file.id,
                    uploaded.id,
                    uploaded.name,
                )
                reason = f"{reason} (converted copy left as item {uploaded.id})"
            raise ConversionError(file.name, reason) from exc

        logger.info(
            "[convert] converted file; file_id:%s;converted_id:%s;bytes:%d",
            file.id,
            converted.id,
            len(content),
        )
        return converted


def graph_converter_from_config(drive: DriveProvider, config: AppConfig) -> GraphConverter:
    """Construct a GraphConverter from application configuration.

    Args:
        drive: DriveProvider for the configured user.
        config: Application configuration instance.

    Returns:
        Configured GraphConverter instance.
    """
    return GraphConverter(
        drive=drive,
        staging_folder=config.staging_folder,
        target_format=config.target_format,
    )
