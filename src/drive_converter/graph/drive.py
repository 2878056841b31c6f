"""Remote tree provider — OneDrive folders and files via Microsoft Graph."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from drive_converter.graph.client import GRAPH_BASE_URL, GraphApiError, GraphClient
from drive_converter.graph.models import (
    FIELD_FOLDER,
    FIELD_ID,
    ODATA_NEXT_LINK,
    ODATA_VALUE,
    DriveFile,
    DriveFolder,
)

if TYPE_CHECKING:
    from drive_converter.config import AppConfig

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404


class DriveProvider:
    """Lists, reads, moves and renames items in one user's OneDrive."""

    def __init__(self, graph_client: GraphClient, drive_user: str) -> None:
        """Initialise the provider.

        Args:
            graph_client: Authenticated GraphClient instance.
            drive_user: UPN or object ID of the drive owner. Required when using
                app permissions (client credentials flow) where /me is not available.
        """
        self._graph = graph_client
        self._drive_user = drive_user

    @property
    def _drive_path(self) -> str:
        return f"/users/{self._drive_user}/drive"

    def _item_path(self, item_id: str) -> str:
        return f"{self._drive_path}/items/{item_id}"

    def get_folder(self, folder_id: str) -> DriveFolder | None:
        """Fetch a folder by ID.

        Args:
            folder_id: Drive item ID.

        Returns:
            The folder, or None if no item exists with that ID or the item
            is not a folder.

        Raises:
            GraphApiError: For any failure other than 404.
        """
        try:
            raw = self._graph.get(self._item_path(folder_id))
        except GraphApiError as exc:
            if exc.status_code == HTTP_NOT_FOUND:
                logger.warning("[get_folder] folder not found; folder_id:%s", folder_id)
                return None
            raise
        if FIELD_FOLDER not in raw:
            logger.warning("[get_folder] item is not a folder; folder_id:%s", folder_id)
            return None
        return DriveFolder.from_graph(raw)

    def get_file(self, file_id: str) -> DriveFile:
        """Fetch a file by ID."""
        return DriveFile.from_graph(self._graph.get(self._item_path(file_id)))

    def list_files(self, folder_id: str) -> list[DriveFile]:
        """Return the direct child files of a folder in provider order."""
        return [
            DriveFile.from_graph(child)
            for child in self._children(folder_id)
            if FIELD_FOLDER not in child
        ]

    def list_subfolders(self, folder_id: str) -> list[DriveFolder]:
        """Return the direct child folders of a folder in provider order."""
        return [
            DriveFolder.from_graph(child)
            for child in self._children(folder_id)
            if FIELD_FOLDER in child
        ]

    def get_converted_content(self, file: DriveFile, target_format: str) -> bytes:
        """Download a file rendered in another format (e.g. ``pdf``) by Graph."""
        return self._graph.get_content(
            f"{self._item_path(file.id)}/content?format={quote(target_format)}"
        )

    def upload_file(
        self, folder_path: str, name: str, content: bytes, mime_type: str
    ) -> DriveFile:
        """Create (or replace) a file at ``<root>/<folder_path>/<name>``.

        Args:
            folder_path: Slash-separated path below the drive root.
            name: File name to create.
            content: Raw bytes of the new file.
            mime_type: MIME type sent as Content-Type.

        Returns:
            The created file.
        """
        folder = folder_path.strip("/")
        target = quote(f"{folder}/{name}" if folder else name)
        raw = self._graph.put_content(
            f"{self._drive_path}/root:/{target}:/content", content, content_type=mime_type
        )
        return DriveFile.from_graph(raw)

    def move_file(self, file: DriveFile, new_parent_id: str) -> DriveFile:
        """Move a file under another folder and return the updated file."""
        raw = self._graph.patch(
            self._item_path(file.id), {"parentReference": {FIELD_ID: new_parent_id}}
        )
        logger.info(
            "[move_file] moved file; file_id:%s;new_parent_id:%s", file.id, new_parent_id
        )
        return DriveFile.from_graph(raw)

    def rename_file(self, file: DriveFile, new_name: str) -> DriveFile:
        """Rename a file in place and return the updated file."""
        raw = self._graph.patch(self._item_path(file.id), {"name": new_name})
        logger.info("[rename_file] renamed file; file_id:%s;new_name:%s", file.id, new_name)
        return DriveFile.from_graph(raw)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _children(self, folder_id: str) -> Iterator[dict[str, Any]]:
        """Yield raw child items, following @odata.nextLink pagination."""
        next_path: str | None = f"{self._item_path(folder_id)}/children"
        while next_path is not None:
            response = self._graph.get(next_path)
            yield from response.get(ODATA_VALUE, [])
            next_link = response.get(ODATA_NEXT_LINK)
            next_path = self._relative_path(next_link) if next_link else None

    @staticmethod
    def _relative_path(full_url: str) -> str:
        """Convert a full Graph API URL to a relative path for GraphClient.get()."""
        if full_url.startswith(GRAPH_BASE_URL):
            return full_url[len(GRAPH_BASE_URL) :]
        return full_url


def drive_provider_from_config(graph_client: GraphClient, config: AppConfig) -> DriveProvider:
    """Construct a DriveProvider from application configuration.

    Args:
        graph_client: Authenticated GraphClient instance.
        config: Application configuration instance.

    Returns:
        Configured DriveProvider instance.
    """
    return DriveProvider(graph_client=graph_client, drive_user=config.drive_user)
