"""Folder locator parsing — turns a pasted URL into a bare drive item ID."""

import re

# /drive/folders/<id>, /drive/u/<n>/folders/<id> and /drive/items/<id>
_FOLDER_URL_PATTERN = re.compile(r"/drive(?:/u/[^/]*)?/(?:folders|items)/([^/?#\s]*)/?")


def extract_folder_id(locator: str) -> str:
    """Return the folder ID embedded in ``locator``.

    A bare ID contains no ``/drive/.../<id>`` segment and is returned unchanged
    (surrounding whitespace removed), which makes the extraction idempotent.

    Args:
        locator: Folder URL or bare folder ID.

    Returns:
        The folder ID.
    """
    match = _FOLDER_URL_PATTERN.search(locator)
    if match is None:
        return locator.strip()
    return match.group(1)
