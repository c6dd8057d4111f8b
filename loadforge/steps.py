"""Builders that turn an HTTP request description into a journey step."""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

from .checks import Check, expect
from .client import Response
from .core.journey import Context, Step, StepResult
from .utils.errors import ConfigurationError


Templated = Union[Any, Callable[[Context], Any]]
Extractor = Callable[[Response, Context], None]


def _resolve(value: Templated, context: Context) -> Any:
    return value(context) if callable(value) else value


def bearer(context: Context) -> Dict[str, str]:
    """Authorization header from the token a previous step stored."""
    token = context.get("access_token")
    return {"Authorization": f"Bearer {token}"} if token else {}


def request_step(
    label: str,
    method: str,
    path: Templated,
    *,
    body: Templated = None,
    headers: Templated = None,
    checks: Sequence[Check] = (),
    extract: Optional[Extractor] = None,
    timeout_s: Optional[float] = None,
    think_time_ms: Tuple[int, int] = (0, 0),
    best_effort: bool = False,
    requires: Sequence[str] = (),
) -> Step:
    """Build a step issuing one request through the context's transport.

    ``path``, ``body`` and ``headers`` may be callables of the Context so a step
    can use ids created by earlier steps. ``checks`` decide success and
    ``extract`` stores what later steps need back into the Context.
    """
    timeout_ms = timeout_s * 1000.0 if timeout_s else None

    async def action(context: Context) -> StepResult:
        if context.transport is None:
            raise ConfigurationError(f"Step '{label}' needs a transport")
        response = await context.transport.call(
            method,
            _resolve(path, context),
            body=_resolve(body, context),
            headers=_resolve(headers, context),
            timeout_ms=timeout_ms,
        )
        expect(response, *checks)
        if extract is not None:
            extract(response, context)
        return StepResult.ok(duration_ms=response.duration_ms)

    action.__name__ = f"{label}_action"
    return Step(
        label=label,
        action=action,
        think_time_ms=think_time_ms,
        best_effort=best_effort,
        requires=tuple(requires),
        timeout_s=timeout_s,
    )
