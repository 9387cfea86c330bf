"""
Multipart encoding of event attachments.

Files are attached to events with ``multipart/form-data`` bodies:

- creating an event with a file posts to ``events`` with an ``event`` part
  (the event as JSON) and a ``file`` part;
- attaching a file to an existing event posts to ``events/{id}`` with a
  ``file`` part only.

Encoding is delegated to ``urllib3.encode_multipart_formdata``, the encoder
``requests`` itself uses for ``files=`` uploads.
"""

from __future__ import annotations

import json
import mimetypes
import os
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote

from urllib3 import encode_multipart_formdata


@dataclass(frozen=True)
class EncodedAttachment:
    """A ready to send multipart request."""

    path: str
    body: bytes
    content_type: str


def read_file_bounded(path: str, max_bytes: int) -> bytes:
    """Read a file, refusing anything larger than ``max_bytes``."""
    size = os.stat(path).st_size
    if size > max_bytes:
        raise ValueError(f'file too large for upload cap: {size} > {max_bytes}')
    with open(path, 'rb') as f:
        data = f.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ValueError('file too large for upload cap')
    return data


class AttachmentEncoder:
    """Build multipart bodies pairing file content with an event."""

    def __init__(self, max_upload_bytes: int = 25 * 1024 * 1024) -> None:
        self.max_upload_bytes = int(max_upload_bytes)

    def _file_part(self, filename: str, content: bytes,
                   content_type: Optional[str]) -> Tuple[str, bytes, str]:
        if len(content) > self.max_upload_bytes:
            raise ValueError(f'attachment too large: {len(content)} > {self.max_upload_bytes}')
        ctype = content_type or mimetypes.guess_type(filename)[0] or 'application/octet-stream'
        return filename, content, ctype

    def for_new_event(self, event: Mapping[str, Any], filename: str, content: bytes,
                      content_type: Optional[str] = None) -> EncodedAttachment:
        """Encode an ``events`` creation request carrying one file."""
        fields: List[Tuple[str, Union[str, Tuple[str, bytes, str]]]] = [
            ('event', json.dumps(dict(event))),
            ('file', self._file_part(filename, content, content_type)),
        ]
        body, ctype = encode_multipart_formdata(fields)
        return EncodedAttachment(path='events', body=body, content_type=ctype)

    def for_event_id(self, event_id: str, filename: str, content: bytes,
                     content_type: Optional[str] = None) -> EncodedAttachment:
        """Encode a request adding one file to an existing event."""
        if not event_id:
            raise ValueError('event_id is required')
        body, ctype = encode_multipart_formdata([
            ('file', self._file_part(filename, content, content_type)),
        ])
        return EncodedAttachment(path=f'events/{quote(event_id, safe="")}', body=body, content_type=ctype)

    def read_file(self, path: str) -> Tuple[str, bytes]:
        """Return ``(basename, content)`` of a local file within the size cap."""
        return os.path.basename(path), read_file_bounded(path, self.max_upload_bytes)
