"""
Haunti — core.blobs
-------------------

Content-addressed blob storage used for circuit artifacts and submitted proofs.

    fetch(ref) -> bytes
    store(data) -> ref

References
----------
- "sha256:<hex>"   content address (the default produced by `store`)
- any other string is an opaque key (e.g. "inference/program.json") that the
  backend resolves on its own; the HTTP backend also accepts absolute URLs.

Backends
--------
- MemoryBlobStore  in-process dict; optional latency and fault injection (tests, devnets)
- FileBlobStore    directory on disk, sharded by the first two hex chars
- HttpBlobStore    gateway reachable over HTTP(S), via `httpx.AsyncClient`

Errors: BlobNotFound (no such blob), BlobUnavailable (transient transport
failure), BlobIntegrityError (content does not match its sha256 reference).
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from collections import Counter
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol, Union

import httpx

from .errors import IntegrityError, NotFound, TransientInfraError

log = logging.getLogger(__name__)

REF_PREFIX = "sha256:"


class BlobNotFound(NotFound):
    code = "HAUNTI/BLOB_NOT_FOUND"


class BlobUnavailable(TransientInfraError):
    code = "HAUNTI/BLOB_UNAVAILABLE"


class BlobIntegrityError(IntegrityError):
    code = "HAUNTI/BLOB_INTEGRITY"


class BlobStore(Protocol):
    async def fetch(self, ref: str) -> bytes: ...
    async def store(self, data: bytes) -> str: ...


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def content_ref(data: bytes) -> str:
    """Return the content-address reference for `data`."""
    return REF_PREFIX + sha256_hex(data)


def digest_of(ref: str) -> Optional[str]:
    """Return the hex digest embedded in a content reference, or None for opaque keys."""
    if ref.startswith(REF_PREFIX):
        hx = ref[len(REF_PREFIX):].lower()
        if len(hx) == 64 and all(c in "0123456789abcdef" for c in hx):
            return hx
    return None


def check_content(ref: str, data: bytes) -> bytes:
    want = digest_of(ref)
    if want is not None and sha256_hex(data) != want:
        raise BlobIntegrityError(
            "blob content does not match its reference",
            details={"ref": ref, "got": sha256_hex(data)},
        )
    return data


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------


class MemoryBlobStore:
    """
    Dict-backed store. `latency` makes every fetch yield to the loop, which is
    what concurrency tests need; `fail_next(n)` makes the next n fetches raise
    BlobUnavailable.
    """

    def __init__(self, seed: Optional[Mapping[str, bytes]] = None, *, latency: float = 0.0) -> None:
        self._blobs: Dict[str, bytes] = dict(seed or {})
        self.latency = float(latency)
        self.fetch_counts: Counter[str] = Counter()
        self._fail_budget = 0

    def put(self, data: bytes, ref: Optional[str] = None) -> str:
        key = ref or content_ref(data)
        self._blobs[key] = bytes(data)
        return key

    def fail_next(self, n: int = 1) -> None:
        self._fail_budget = int(n)

    def __contains__(self, ref: object) -> bool:
        return ref in self._blobs

    async def fetch(self, ref: str) -> bytes:
        self.fetch_counts[ref] += 1
        await asyncio.sleep(self.latency)
        if self._fail_budget > 0:
            self._fail_budget -= 1
            raise BlobUnavailable("injected storage fault", details={"ref": ref})
        try:
            data = self._blobs[ref]
        except KeyError:
            raise BlobNotFound("blob not found", details={"ref": ref}) from None
        return check_content(ref, data)

    async def store(self, data: bytes) -> str:
        await asyncio.sleep(self.latency)
        return self.put(data)


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------


class FileBlobStore:
    """Blobs under `root`; content refs live at root/<hh>/<hex>, opaque keys at root/<key>."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root).expanduser()

    def _path(self, ref: str) -> Path:
        hx = digest_of(ref)
        if hx is not None:
            return self.root / hx[:2] / hx
        rel = Path(ref)
        if rel.is_absolute() or ".." in rel.parts:
            raise BlobNotFound("blob key escapes the store root", details={"ref": ref})
        return self.root / rel

    def _read(self, ref: str) -> bytes:
        p = self._path(ref)
        try:
            return p.read_bytes()
        except FileNotFoundError:
            raise BlobNotFound("blob not found", details={"ref": ref, "path": str(p)}) from None
        except OSError as e:
            raise BlobUnavailable("blob read failed", details={"ref": ref}, cause=e) from e

    def _write(self, data: bytes) -> str:
        ref = content_ref(data)
        p = self._path(ref)
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, p)
        return ref

    async def fetch(self, ref: str) -> bytes:
        data = await asyncio.to_thread(self._read, ref)
        return check_content(ref, data)

    async def store(self, data: bytes) -> str:
        return await asyncio.to_thread(self._write, bytes(data))


# ---------------------------------------------------------------------------
# HTTP gateway
# ---------------------------------------------------------------------------


class HttpBlobStore:
    """
    Gateway conventions:
      GET  {base}/blobs/{ref}   -> raw bytes (404 if unknown)
      POST {base}/blobs         -> {"ref": "sha256:..."}
    Absolute http(s) URLs passed as refs are fetched as-is.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    def _url(self, ref: str) -> str:
        if ref.startswith(("http://", "https://")):
            return ref
        return f"{self.base_url}/blobs/{ref}"

    async def fetch(self, ref: str) -> bytes:
        url = self._url(ref)
        try:
            resp = await self._client.get(url)
        except httpx.HTTPError as e:
            raise BlobUnavailable("blob gateway unreachable", details={"ref": ref}, cause=e) from e
        if resp.status_code == 404:
            raise BlobNotFound("blob not found", details={"ref": ref, "url": url})
        if resp.status_code >= 400:
            raise BlobUnavailable(
                "blob gateway error", details={"ref": ref, "status": resp.status_code}
            )
        return check_content(ref, resp.content)

    async def store(self, data: bytes) -> str:
        try:
            resp = await self._client.post(
                f"{self.base_url}/blobs",
                content=bytes(data),
                headers={"content-type": "application/octet-stream"},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise BlobUnavailable("blob upload failed", cause=e) from e
        ref = content_ref(data)
        try:
            returned = resp.json().get("ref")
        except ValueError:
            returned = None
        if returned and returned != ref:
            log.warning("gateway returned unexpected ref", extra={"expected": ref, "got": returned})
        return ref

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpBlobStore":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()


def open_blob_store(uri: str) -> BlobStore:
    """
    Build a store from a URI: "memory://", "file:///var/lib/haunti/blobs",
    a bare directory path, or an http(s) gateway base URL.
    """
    if uri.startswith("memory://"):
        return MemoryBlobStore()
    if uri.startswith(("http://", "https://")):
        return HttpBlobStore(uri)
    if uri.startswith("file://"):
        return FileBlobStore(uri[len("file://"):])
    return FileBlobStore(uri)


__all__ = [
    "BlobStore",
    "BlobNotFound",
    "BlobUnavailable",
    "BlobIntegrityError",
    "MemoryBlobStore",
    "FileBlobStore",
    "HttpBlobStore",
    "open_blob_store",
    "content_ref",
    "digest_of",
    "sha256_hex",
]
