"""HTTP transport used by journey steps to reach the system under test."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

import httpx

from .core.config import TargetSettings
from .utils.errors import CallTimeout, StepFailure

logger = logging.getLogger(__name__)


@dataclass
class Response:
    """What a step sees of one external call."""

    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""
    duration_ms: float = 0.0

    def json(self) -> Any:
        """Decoded JSON body; a malformed body is a step failure, never a crash."""
        try:
            return json.loads(self.body) if self.body else None
        except ValueError as e:
            raise StepFailure(f"malformed JSON body: {e}") from e


@runtime_checkable
class Transport(Protocol):
    """The external-call capability consumed by journey steps."""

    async def call(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout_ms: Optional[float] = None,
    ) -> Response: ...


class HttpTransport:
    """``Transport`` over a shared ``httpx.AsyncClient`` connection pool."""

    def __init__(
        self,
        settings: Optional[TargetSettings] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        max_connections: int = 1000,
    ):
        self.settings = settings or TargetSettings()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=self.settings.base_url,
            headers=self.settings.default_headers,
            timeout=self.settings.default_timeout_s,
            limits=httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections),
        )

    async def call(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout_ms: Optional[float] = None,
    ) -> Response:
        timeout = timeout_ms / 1000.0 if timeout_ms else self.settings.default_timeout_s
        request_kwargs: Dict[str, Any] = {"headers": dict(headers or {}), "timeout": timeout}
        if body is not None:
            if isinstance(body, (str, bytes)):
                request_kwargs["content"] = body
            else:
                request_kwargs["json"] = body

        started = time.perf_counter()
        try:
            resp = await self.client.request(method.upper(), path, **request_kwargs)
        except httpx.TimeoutException as e:
            logger.debug(f"{method.upper()} {path} timed out after {timeout}s: {e}")
            raise CallTimeout() from e
        except httpx.HTTPError as e:
            raise StepFailure(f"{method.upper()} {path}: {type(e).__name__}: {e}") from e
        duration_ms = (time.perf_counter() - started) * 1000.0

        return Response(
            status_code=resp.status_code,
            headers=dict(resp.headers),
            body=resp.text,
            duration_ms=duration_ms,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()
