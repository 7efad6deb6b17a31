"""Content-addressed file storage for uploads and check-in photos.

Layout:
  <blobstore_dir>/sha256/<first2>/<sha256>

References handed back to the core look like ``blob://sha256/<hex>``; the
core never keeps raw bytes in the database.
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
import tempfile
from pathlib import Path
from urllib.parse import unquote

from .config import settings
from .errors import ValidationError

REFERENCE_PREFIX = "blob://sha256/"


class StorageError(Exception):
    pass


def parse_data_url(value: str) -> tuple[bytes, str | None]:
    """Return (bytes, content_type) for a ``data:`` URL."""
    if not isinstance(value, str) or not value.startswith("data:"):
        raise ValidationError("invalid_payload", "Expected a data: URL")

    header, _, payload = value.partition(",")
    if not payload:
        return b"", None

    # data:[<mediatype>][;base64],<data>
    content_type = None
    is_base64 = False
    for part in header[5:].split(";"):
        part = part.strip()
        if not part:
            continue
        if part.lower() == "base64":
            is_base64 = True
        elif "/" in part and content_type is None:
            content_type = part

    if is_base64:
        try:
            return base64.b64decode(payload, validate=False), content_type
        except (ValueError, TypeError) as e:
            raise ValidationError("invalid_payload", f"data URL base64 decode failed: {e}") from e
    return unquote(payload).encode("utf-8"), content_type


class BlobStorage:
    """Filesystem storage collaborator keyed by sha256 of the content."""

    def __init__(self, root_dir: str | Path | None = None):
        self.root_dir = Path(root_dir) if root_dir is not None else settings.blobstore_path

    def path_for(self, sha256_hex: str) -> Path:
        sha = (sha256_hex or "").strip().lower()
        if len(sha) != 64 or any(ch not in "0123456789abcdef" for ch in sha):
            raise StorageError(f"invalid sha256 digest: {sha256_hex!r}")
        return self.root_dir / "sha256" / sha[:2] / sha

    def path_for_reference(self, reference: str) -> Path:
        if not reference.startswith(REFERENCE_PREFIX):
            raise StorageError(f"not a blob reference: {reference!r}")
        return self.path_for(reference[len(REFERENCE_PREFIX):])

    def exists(self, reference: str) -> bool:
        return self.path_for_reference(reference).is_file()

    def read(self, reference: str) -> bytes:
        return self.path_for_reference(reference).read_bytes()

    def store(self, payload: bytes | str, metadata: dict | None = None) -> str:
        """Persist ``payload`` (raw bytes or a data URL) and return its reference."""
        content_type = None
        if isinstance(payload, str):
            data, content_type = parse_data_url(payload)
        elif isinstance(payload, (bytes, bytearray)):
            data = bytes(payload)
        else:
            raise ValidationError("invalid_payload", "Payload must be bytes or a data: URL")

        digest = hashlib.sha256(data).hexdigest()
        dest = self.path_for(digest)
        self._write_atomic(dest, data)

        meta = dict(metadata or {})
        if content_type and "content_type" not in meta:
            meta["content_type"] = content_type
        if meta:
            meta["size_bytes"] = len(data)
            self._write_atomic(dest.with_name(f"{digest}.json"), json.dumps(meta, sort_keys=True).encode())

        return f"{REFERENCE_PREFIX}{digest}"

    def _write_atomic(self, dest: Path, data: bytes) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        if dest.exists():
            return

        fd, tmp_path = tempfile.mkstemp(prefix=f"{dest.name}.tmp.", dir=str(dest.parent))
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, dest)
            tmp_path = None
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass


_storage: BlobStorage | None = None


def get_storage() -> BlobStorage:
    global _storage
    if _storage is None:
        _storage = BlobStorage()
    return _storage


def set_storage(storage: BlobStorage | None) -> None:
    """Swap the process-wide storage (tests point it at a tmp dir)."""
    global _storage
    _storage = storage
