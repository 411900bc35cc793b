"""
Attachment path resolution and local attachment construction.
"""

import mimetypes
import os
from pathlib import Path
from typing import Union

from sigchat.errors import AttachmentError
from sigchat.models.envelope import Attachment

DEFAULT_STORAGE_ROOT = Path.home() / ".local" / "share" / "signal-cli"
ATTACHMENTS_FOLDER = "attachments"


class AttachmentResolver:
    def __init__(self, storage_root: Union[str, Path] = DEFAULT_STORAGE_ROOT):
        self._storage_root = Path(storage_root).expanduser()

    @property
    def storage_root(self) -> Path:
        return self._storage_root

    def resolve(self, attachment: Attachment) -> str:
        """Path of the attachment's file. Never touches the filesystem.

        Attachments without a remote ID were authored locally, so their
        original filename is already a usable path. Not cached: the daemon
        owns the backing store.
        """
        if not attachment.has_remote_id:
            return attachment.filename or ""
        return os.path.join(self._storage_root, ATTACHMENTS_FOLDER, attachment.id)  # type: ignore[arg-type]


def local_attachment(path: Union[str, Path]) -> Attachment:
    """Build an attachment for a local file that has not been sent yet.

    Raises AttachmentError if the file is missing or unreadable.
    """
    filename = os.fspath(path)
    if not os.path.isfile(filename):
        raise AttachmentError(f"No such file: {filename}", path=filename, code="file_not_found")
    if not os.access(filename, os.R_OK):
        raise AttachmentError(f"File is not readable: {filename}", path=filename, code="unreadable")
    try:
        size = os.path.getsize(filename)
    except OSError as e:
        raise AttachmentError(f"Cannot stat {filename}: {e}", path=filename, code="unreadable")
    content_type, _ = mimetypes.guess_type(filename)
    return Attachment(
        content_type=content_type or "application/octet-stream",
        filename=filename,
        id=None,
        size=size,
    )
