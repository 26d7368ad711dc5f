from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
import re
import threading
import uuid
from pathlib import Path
from typing import Dict, Optional, Tuple

from .errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[\w-]+=[^;,]*)*);base64,(?P<data>.*)$", re.S)
_REF_RE = re.compile(r"^[0-9a-f]{32}(\.[A-Za-z0-9]{1,8})?$")

MAX_MEDIA_BYTES = 20 * 1024 * 1024


def parse_data_uri(uri: str) -> Tuple[bytes, str]:
    """Decode 'data:<mime>;base64,<payload>' into (bytes, mime)."""
    m = _DATA_URI_RE.match((uri or "").strip())
    if not m:
        raise ValidationError("Expected a base64 data URI: 'data:<mimetype>;base64,<encoded_data>'.")
    try:
        data = base64.b64decode(m.group("data"), validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Media payload is not valid base64.")
    return data, (m.group("mime") or "application/octet-stream")


def to_data_uri(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


class MediaStore:
    """
    Opaque references to photo/audio bytes.

    With `root` the bytes live as files under that directory; without it they are
    kept in memory. Only references travel through the rest of the system.
    """

    def __init__(self, root: Optional[Path] = None) -> None:
        self.root = root
        self._mem: Dict[str, Tuple[bytes, str]] = {}
        self._lock = threading.Lock()
        if root is not None:
            root.mkdir(parents=True, exist_ok=True)

    def put(self, data: bytes, mime_type: str) -> str:
        if not data:
            raise ValidationError("Media payload is empty.")
        if len(data) > MAX_MEDIA_BYTES:
            raise ValidationError(f"Media payload exceeds {MAX_MEDIA_BYTES // (1024 * 1024)} MB.")
        ext = mimetypes.guess_extension(mime_type or "") or ""
        ref = f"{uuid.uuid4().hex}{ext}"
        if self.root is None:
            with self._lock:
                self._mem[ref] = (data, mime_type)
        else:
            tmp = self.root / f"{ref}.tmp"
            tmp.write_bytes(data)
            tmp.replace(self.root / ref)
        logger.info(f"Stored media {ref} ({mime_type}, {len(data)} bytes)")
        return ref

    def put_data_uri(self, uri: str) -> str:
        data, mime = parse_data_uri(uri)
        return self.put(data, mime)

    def get(self, ref: str) -> Tuple[bytes, str]:
        if not _REF_RE.match(ref or ""):
            raise NotFound(f"Media {ref!r} not found.")
        if self.root is None:
            with self._lock:
                item = self._mem.get(ref)
            if item is None:
                raise NotFound(f"Media {ref!r} not found.")
            return item
        path = self.root / ref
        if not path.exists():
            raise NotFound(f"Media {ref!r} not found.")
        mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return path.read_bytes(), mime

    def exists(self, ref: str) -> bool:
        try:
            self.get(ref)
        except NotFound:
            return False
        return True

    def data_uri(self, ref: str) -> str:
        data, mime = self.get(ref)
        return to_data_uri(data, mime)
