from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

import httpx

from ._version import __version__
from .config import DEFAULT_TIMEOUT_S

USER_AGENT = f"skillsync/{__version__}"

_STATUS_HINTS = {
    403: "GitHub refused the request (rate limit or private repository); retry later or check access.",
    404: "Repository or branch not found; check owner, name and branch.",
    429: "Too many requests; wait a moment before retrying.",
}
_DEFAULT_HINT = "Check your network connection and the repository URL."


class SkillSyncError(RuntimeError):
    pass


class SkillSyncHTTPError(SkillSyncError):
    def __init__(self, status_code: int, url: str) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(f"HTTP {status_code} for {url}")

    @property
    def hint(self) -> str:
        return _STATUS_HINTS.get(self.status_code, _DEFAULT_HINT)


class DownloadTimeoutError(SkillSyncError):
    pass


class ArchiveError(SkillSyncError):
    pass


class EmptyArchiveError(ArchiveError):
    pass


class ArchiveClient:
    """
    Thin async wrapper over httpx for fetching repository archives.

    The whole body is streamed into memory; archives are small enough that
    extraction works on the in-memory bytes.
    """

    def __init__(
        self,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout_s = timeout_s
        self._http = httpx.AsyncClient(
            timeout=timeout_s,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ArchiveClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def fetch(self, url: str) -> bytes:
        try:
            async with self._http.stream("GET", url) as resp:
                if not resp.is_success:
                    raise SkillSyncHTTPError(resp.status_code, url)
                buf = bytearray()
                async for chunk in resp.aiter_bytes():
                    buf.extend(chunk)
        except httpx.HTTPError as e:
            raise SkillSyncError(f"Download failed: {e}") from e
        return bytes(buf)


@dataclass(frozen=True)
class EndpointLatency:
    url: str
    latency_ms: int | None = None
    status: int | None = None
    error: str | None = None


async def _probe_one(client: httpx.AsyncClient, url: str) -> EndpointLatency:
    started = time.perf_counter()
    try:
        resp = await client.get(url)
    except httpx.HTTPError as e:
        return EndpointLatency(url=url, error=str(e) or type(e).__name__)
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    return EndpointLatency(url=url, latency_ms=elapsed_ms, status=resp.status_code)


async def probe_endpoints(
    urls: list[str],
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[EndpointLatency]:
    """Measure round-trip latency of a plain GET against each URL."""
    cleaned = [u.strip() for u in urls if u.strip()]
    if not cleaned:
        raise SkillSyncError("No endpoint URL to probe.")
    async with httpx.AsyncClient(
        timeout=timeout_s,
        headers={"User-Agent": USER_AGENT},
        transport=transport,
    ) as client:
        rows = await asyncio.gather(*(_probe_one(client, url) for url in cleaned))
    return list(rows)
