from __future__ import annotations

import asyncio
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

from .client import EndpointLatency, SkillSyncError, probe_endpoints
from .config import DEFAULT_TIMEOUT_S
from .models import AppType, InstalledSkill, Skill
from .service import SkillService, filter_skills

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(frozen=True)
class DiscoverRequest:
    query: str


@dataclass(frozen=True)
class InstallRequest:
    spec: str
    app: AppType


@dataclass(frozen=True)
class DiscoverFinished:
    query: str
    skills: tuple[Skill, ...] = ()
    error: str | None = None

    @property
    def key(self) -> str:
        return self.query


@dataclass(frozen=True)
class InstallFinished:
    spec: str
    installed: InstalledSkill | None = None
    error: str | None = None

    @property
    def key(self) -> str:
        return self.spec


@dataclass(frozen=True)
class ProbeFinished:
    url: str
    rows: tuple[EndpointLatency, ...] = ()
    error: str | None = None

    @property
    def key(self) -> str:
        return self.url


class BackgroundWorker:
    """
    One daemon thread owning its own asyncio event loop, fed through a
    request queue and answering on a result queue.

    Requests are handled one at a time. With ``coalesce_latest`` every
    request still queued when the worker picks up work is discarded in
    favour of the most recent one.
    """

    def __init__(self, *, name: str, coalesce_latest: bool = False) -> None:
        self.coalesce_latest = coalesce_latest
        self._requests: queue.Queue[Any] = queue.Queue()
        self._results: queue.Queue[Any] = queue.Queue()
        self._closed = False
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    # hooks

    async def setup(self) -> None:
        pass

    async def handle(self, request: Any) -> Any:
        raise NotImplementedError

    def fail(self, request: Any, error: str) -> Any:
        raise NotImplementedError

    # foreground side

    def start(self) -> "BackgroundWorker":
        self._thread.start()
        return self

    def submit(self, request: Any) -> None:
        if self._closed:
            raise SkillSyncError(f"Worker {self._thread.name} is closed.")
        self._requests.put(request)

    def drain(self) -> list[Any]:
        """All results available right now, without blocking."""
        out: list[Any] = []
        while True:
            try:
                out.append(self._results.get_nowait())
            except queue.Empty:
                return out

    def wait(self, timeout: float | None = None) -> Any | None:
        try:
            return self._results.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self, timeout: float | None = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._requests.put(_STOP)
        if self._thread.is_alive():
            self._thread.join(timeout)

    def __enter__(self) -> "BackgroundWorker":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # worker side

    def _next_request(self) -> Any:
        request = self._requests.get()
        if not self.coalesce_latest or request is _STOP:
            return request
        while True:
            try:
                newer = self._requests.get_nowait()
            except queue.Empty:
                return request
            if newer is _STOP:
                return _STOP
            request = newer

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        try:
            setup_error: str | None = None
            try:
                loop.run_until_complete(self.setup())
            except Exception as e:  # noqa: BLE001
                logger.warning("Worker %s failed to start: %s", self._thread.name, e)
                setup_error = str(e) or type(e).__name__

            while True:
                request = self._next_request()
                if request is _STOP:
                    break
                if setup_error is not None:
                    self._results.put(self.fail(request, setup_error))
                    continue
                try:
                    result = loop.run_until_complete(self.handle(request))
                except Exception as e:  # noqa: BLE001
                    logger.debug("Worker %s request failed: %s", self._thread.name, e)
                    result = self.fail(request, str(e) or type(e).__name__)
                self._results.put(result)
        finally:
            loop.close()


class SkillsWorker(BackgroundWorker):
    def __init__(self, service_factory: Callable[[], SkillService] = SkillService) -> None:
        super().__init__(name="skillsync-skills")
        self._service_factory = service_factory
        self._service: SkillService | None = None

    async def setup(self) -> None:
        self._service = self._service_factory()

    async def handle(self, request: Any) -> Any:
        if self._service is None:
            raise SkillSyncError("Skills worker was not started.")
        if isinstance(request, DiscoverRequest):
            skills = await self._service.list_skills()
            return DiscoverFinished(query=request.query, skills=tuple(filter_skills(skills, request.query)))
        if isinstance(request, InstallRequest):
            installed = await self._service.install(request.spec, request.app)
            return InstallFinished(spec=request.spec, installed=installed)
        raise TypeError(f"Unsupported skills request: {request!r}")

    def fail(self, request: Any, error: str) -> Any:
        if isinstance(request, DiscoverRequest):
            return DiscoverFinished(query=request.query, error=error)
        if isinstance(request, InstallRequest):
            return InstallFinished(spec=request.spec, error=error)
        raise TypeError(f"Unsupported skills request: {request!r}")


class ProbeWorker(BackgroundWorker):
    """Endpoint latency probes; only the most recently requested URL is probed."""

    def __init__(
        self,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(name="skillsync-probe", coalesce_latest=True)
        self.timeout_s = timeout_s
        self._transport = transport

    async def handle(self, request: Any) -> Any:
        rows = await probe_endpoints([request], timeout_s=self.timeout_s, transport=self._transport)
        return ProbeFinished(url=request, rows=tuple(rows))

    def fail(self, request: Any, error: str) -> Any:
        return ProbeFinished(url=str(request), error=error)


@dataclass(frozen=True)
class Notification:
    message: str
    ok: bool


@dataclass
class ResultRouter:
    """
    Matches worker results to the overlay the user is looking at.

    A result whose key matches the active overlay is applied (and closes it);
    anything else only leaves a passive notification behind.
    """

    active_key: str | None = None
    notifications: list[Notification] = field(default_factory=list)

    def expect(self, key: str) -> None:
        self.active_key = key

    def dismiss(self) -> None:
        self.active_key = None

    def deliver(self, result: Any) -> bool:
        key = result.key
        error = getattr(result, "error", None)
        if self.active_key is not None and key == self.active_key:
            self.active_key = None
            if error is not None:
                self.notifications.append(Notification(message=f"{key}: {error}", ok=False))
            return True
        if error is not None:
            self.notifications.append(Notification(message=f"{key}: {error}", ok=False))
        else:
            self.notifications.append(Notification(message=f"{key}: finished", ok=True))
        return False
