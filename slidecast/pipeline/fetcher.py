from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional
from urllib.parse import unquote, urlparse

import httpx

from slidecast.pipeline.retry import RetryPolicy


class FetchError(Exception):
    retryable = False


class NetworkError(FetchError):
    retryable = True


class HttpStatusError(FetchError):
    retryable = True

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"GET {url} returned HTTP {status_code}")
        self.status_code = status_code


class WriteError(FetchError):
    retryable = False


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, FetchError) and exc.retryable


@dataclass(frozen=True)
class FetchRequest:
    ref: str
    destination: str
    kind: str = "asset"


@dataclass(frozen=True)
class FetchResult:
    request: FetchRequest
    ok: bool
    error: Optional[str] = None

    @property
    def path(self) -> Optional[str]:
        return self.request.destination if self.ok else None


def guess_suffix(ref: str, default: str) -> str:
    suffix = Path(urlparse(ref).path).suffix
    if suffix and len(suffix) <= 6 and suffix[1:].isalnum():
        return suffix.lower()
    return default


class AssetFetcher:
    """Downloads job assets concurrently; one failed asset never aborts the batch."""

    def __init__(
        self,
        timeout: float = 30.0,
        retries: int = 3,
        backoff_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: logging.Logger | None = None,
        local_root: str | Path | None = None,
    ) -> None:
        self.timeout = timeout
        self.policy = RetryPolicy.linear(retries, backoff_seconds, retryable=is_retryable)
        self._transport = transport
        self._sleep = sleep
        self.log = logger or logging.getLogger(__name__)
        self.local_root = Path(local_root).resolve() if local_root else None

    async def fetch_all(self, requests: List[FetchRequest]) -> List[FetchResult]:
        if not requests:
            return []
        timeout = httpx.Timeout(self.timeout)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport, follow_redirects=True) as client:
            results = await asyncio.gather(*(self._fetch_one(client, request) for request in requests))
        failed = [result for result in results if not result.ok]
        if failed:
            self.log.warning(
                "some assets could not be fetched",
                extra={"failed": len(failed), "total": len(results)},
            )
        return list(results)

    async def _fetch_one(self, client: httpx.AsyncClient, request: FetchRequest) -> FetchResult:
        try:
            await self.policy.call(
                lambda: self._download(client, request),
                label=f"fetch {request.kind}",
                sleep=self._sleep,
            )
        except FetchError as exc:
            self.log.warning(
                "asset fetch failed",
                extra={"ref": request.ref, "kind": request.kind, "error": str(exc)},
            )
            _discard(request.destination)
            return FetchResult(request=request, ok=False, error=str(exc))
        return FetchResult(request=request, ok=True)

    async def _download(self, client: httpx.AsyncClient, request: FetchRequest) -> None:
        ref = request.ref.strip()
        if ref.lower().startswith(("http://", "https://")):
            await self._download_http(client, ref, request.destination)
        else:
            await self._copy_local(ref, request.destination)

    async def _download_http(self, client: httpx.AsyncClient, url: str, destination: str) -> None:
        try:
            async with client.stream("GET", url) as resp:
                if not resp.is_success:
                    raise HttpStatusError(url, resp.status_code)
                await self._write_stream(resp, destination)
        except httpx.HTTPError as exc:
            raise NetworkError(f"GET {url} failed: {exc}") from exc

    async def _write_stream(self, resp: httpx.Response, destination: str) -> None:
        try:
            f = await asyncio.to_thread(open, destination, "wb")
        except OSError as exc:
            raise WriteError(f"cannot write {destination}: {exc}") from exc
        try:
            async for chunk in resp.aiter_bytes():
                if chunk:
                    await asyncio.to_thread(f.write, chunk)
        except OSError as exc:
            raise WriteError(f"cannot write {destination}: {exc}") from exc
        finally:
            await asyncio.to_thread(f.close)

    async def _copy_local(self, ref: str, destination: str) -> None:
        source = self._local_source(ref)
        try:
            await asyncio.to_thread(shutil.copyfile, source, destination)
        except OSError as exc:
            raise WriteError(f"cannot copy {source} to {destination}: {exc}") from exc

    def _local_source(self, ref: str) -> Path:
        """Resolves a local reference; only files under ``local_root`` are served."""
        if self.local_root is None:
            raise FetchError(f"local asset references are disabled: {ref}")
        raw = unquote(urlparse(ref).path) if ref.lower().startswith("file://") else ref
        source = Path(raw).resolve()
        if not source.is_relative_to(self.local_root):
            raise FetchError(f"local asset outside {self.local_root}: {raw}")
        if not source.is_file():
            raise FetchError(f"local asset not found: {raw}")
        return source


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
