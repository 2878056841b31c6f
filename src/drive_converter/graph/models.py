"""Data models for Microsoft Graph API drive items."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

# Graph API JSON field names
FIELD_ID = "id"
FIELD_NAME = "name"
FIELD_FOLDER = "folder"
FIELD_FILE = "file"
FIELD_MIME_TYPE = "mimeType"
FIELD_DELETED = "deleted"
FIELD_PARENT_REFERENCE = "parentReference"
FIELD_WEB_URL = "webUrl"

# OData response keys
ODATA_NEXT_LINK = "@odata.nextLink"
ODATA_VALUE = "value"


def file_extension(name: str) -> str:
    """Lowercased text after the final period, or "" when the name has none."""
    dot = name.rfind(".")
    return name[dot + 1 :].lower() if dot != -1 else ""


@dataclass
class DriveFolder:
    """A folder node in the remote drive tree."""

    id: str
    name: str
    web_url: str = ""

    @classmethod
    def from_graph(cls, raw: dict[str, Any]) -> DriveFolder:
        return cls(
            id=raw.get(FIELD_ID, ""),
            name=raw.get(FIELD_NAME, ""),
            web_url=raw.get(FIELD_WEB_URL, ""),
        )


@dataclass
class DriveFile:
    """A leaf file in the remote drive tree.

    Content bytes are not carried on the model; they are fetched on demand
    through the drive provider.
    """

    id: str
    name: str
    parent_id: str
    mime_type: str = ""
    web_url: str = ""
    is_trashed: bool = False

    @property
    def extension(self) -> str:
        return file_extension(self.name)

    @property
    def base_name(self) -> str:
        """Name with the final extension stripped."""
        dot = self.name.rfind(".")
        return self.name[:dot] if dot != -1 else self.name

    @classmethod
    def from_graph(cls, raw: dict[str, Any]) -> DriveFile:
        return cls(
            id=raw.get(FIELD_ID, ""),
            name=raw.get(FIELD_NAME, ""),
            parent_id=raw.get(FIELD_PARENT_REFERENCE, {}).get(FIELD_ID, ""),
            mime_type=raw.get(FIELD_FILE, {}).get(FIELD_MIME_TYPE, ""),
            web_url=raw.get(FIELD_WEB_URL, ""),
            is_trashed=FIELD_DELETED in raw,
        )
