"""
Content-addressed storage for display metadata.

Materials and certificates carry a ``metadata_ref`` pointing here. Blobs are
stored by the sha256 of their bytes, so a reference is also an integrity
check. The ledger never stores metadata itself.

References have the form ``cas:<sha256 hex>``.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

REF_PREFIX = "cas:"


def _to_bytes(content: bytes | str | dict[str, Any]) -> bytes:
    if isinstance(content, dict):
        # Canonical JSON so equal metadata always gets the same reference
        content = json.dumps(content, sort_keys=True, separators=(",", ":"))
    if isinstance(content, str):
        content = content.encode("utf-8")
    return content


def compute_ref(content: bytes | str | dict[str, Any]) -> str:
    """Reference a blob would be stored under."""
    return REF_PREFIX + hashlib.sha256(_to_bytes(content)).hexdigest()


def parse_ref(ref: str) -> str | None:
    """Hex digest of a well-formed reference, else None."""
    if not ref.startswith(REF_PREFIX):
        return None
    digest = ref[len(REF_PREFIX):].lower()
    if len(digest) != 64 or any(c not in "0123456789abcdef" for c in digest):
        return None
    return digest


class MetadataStore:
    """
    Blob store sharded by the first two hex characters of the digest:

        <root>/ab/ab1234...

    Writes are idempotent and atomic (temp file, then rename).
    """

    def __init__(self, root: Path):
        self.root = root

    def _blob_path(self, digest: str) -> Path:
        return self.root / digest[:2] / digest

    def put(self, content: bytes | str | dict[str, Any]) -> str:
        """
        Store a blob and return its reference.

        Args:
            content: Raw bytes, text, or a JSON-compatible dict

        Returns:
            "cas:<sha256>" reference
        """
        data = _to_bytes(content)
        ref = compute_ref(data)
        path = self._blob_path(ref[len(REF_PREFIX):])
        if path.exists():
            return ref

        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(".tmp")
        temp_path.write_bytes(data)
        temp_path.replace(path)
        logger.debug("Stored %d bytes as %s", len(data), ref)
        return ref

    def put_file(self, path: Path) -> str:
        """Store a file; JSON objects are canonicalized first."""
        raw = path.read_bytes()
        try:
            parsed = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return self.put(raw)
        return self.put(parsed) if isinstance(parsed, dict) else self.put(raw)

    def get(self, ref: str) -> bytes | None:
        """Blob bytes, or None for an unknown or malformed reference."""
        digest = parse_ref(ref)
        if digest is None:
            return None
        path = self._blob_path(digest)
        if not path.exists():
            return None
        return path.read_bytes()

    def get_json(self, ref: str) -> dict[str, Any] | None:
        """Blob parsed as a JSON object, or None if missing or not an object."""
        data = self.get(ref)
        if data is None:
            return None
        try:
            parsed = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("Metadata %s is not JSON", ref)
            return None
        return parsed if isinstance(parsed, dict) else None

    def exists(self, ref: str) -> bool:
        digest = parse_ref(ref)
        return digest is not None and self._blob_path(digest).exists()

    def verify(self, ref: str) -> bool:
        """True if the blob exists and still hashes to its reference."""
        data = self.get(ref)
        return data is not None and compute_ref(data) == ref.lower()

    def list_refs(self) -> list[str]:
        refs: list[str] = []
        if not self.root.exists():
            return refs
        for shard in sorted(self.root.iterdir()):
            if shard.is_dir() and len(shard.name) == 2:
                for blob in sorted(shard.iterdir()):
                    if blob.suffix != ".tmp":
                        refs.append(REF_PREFIX + blob.name)
        return refs
