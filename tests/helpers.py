"""Test doubles shared by the unit and integration suites."""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from loadforge.client import Response
from loadforge.core.journey import Context, Step, StepResult


Handler = Union[Response, Exception, Callable[..., Any]]


def json_response(status: int = 200, data: Any = None, duration_ms: float = 5.0) -> Response:
    body = json.dumps({"data": data}) if data is not None else ""
    return Response(status_code=status, body=body, duration_ms=duration_ms)


class FakeTransport:
    """In-memory Transport: routes ``(METHOD, path)`` (query string ignored) to canned handlers."""

    def __init__(self, routes: Optional[Dict[Tuple[str, str], Handler]] = None, delay_s: float = 0.0):
        self.routes: Dict[Tuple[str, str], Handler] = dict(routes or {})
        self.delay_s = delay_s
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def call(self, method, path, body=None, headers=None, timeout_ms=None):
        self.calls.append({"method": method, "path": path, "body": body, "headers": headers,
                           "timeout_ms": timeout_ms})
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        handler = self._match(method, path)
        if handler is None:
            return Response(status_code=404, body="", duration_ms=1.0)
        if isinstance(handler, Exception):
            raise handler
        if isinstance(handler, Response):
            return handler
        result = handler(method=method, path=path, body=body, headers=headers)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    def _match(self, method: str, path: str) -> Optional[Handler]:
        bare = path.split("?", 1)[0]
        if (method, bare) in self.routes:
            return self.routes[(method, bare)]
        # "/schedule/*" style prefixes
        for (route_method, route_path), handler in self.routes.items():
            if route_method == method and route_path.endswith("*") and bare.startswith(route_path[:-1]):
                return handler
        return None

    def paths(self, method: Optional[str] = None) -> List[str]:
        return [c["path"] for c in self.calls if method is None or c["method"] == method]

    async def aclose(self) -> None:
        self.closed = True


def schedule_api_routes() -> Dict[Tuple[str, str], Handler]:
    """A healthy schedule backend."""
    return {
        ("GET", "/"): json_response(200, {"status": "UP"}),
        ("POST", "/users"): json_response(200, {"userId": 7, "accessToken": "token-7"}),
        ("POST", "/token"): json_response(200, {"accessToken": "token-login"}),
        ("GET", "/users"): json_response(200, {"email": "loadtest@test.com"}),
        ("GET", "/users/nickname"): json_response(200, {"content": []}),
        ("GET", "/day-plan/schedule"): json_response(200, {"dayPlanId": 11, "content": []}),
        ("POST", "/day-plan/11/schedule"): json_response(200, {"scheduleId": 99}),
        ("POST", "/day-plan/11/schedules/ai-arrangement"): json_response(200, {"arranged": True}),
        ("PUT", "/schedule/*"): json_response(204),
        ("PATCH", "/schedule/*"): json_response(204),
        ("DELETE", "/schedule/*"): json_response(204),
        ("GET", "/notifications"): json_response(200, {"content": []}),
        ("DELETE", "/token"): json_response(204),
    }


def make_step(label: str, outcome: Any = True, *, best_effort: bool = False, requires=(),
              calls: Optional[List[str]] = None, delay_s: float = 0.0, think_time_ms=(0, 0),
              timeout_s: Optional[float] = None, store: Optional[Dict[str, Any]] = None) -> Step:
    """A step whose action records its label and then succeeds, fails or raises."""

    async def action(context: Context) -> StepResult:
        if calls is not None:
            calls.append(label)
        if delay_s:
            await asyncio.sleep(delay_s)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome:
            for key, value in (store or {}).items():
                context[key] = value
            return StepResult.ok()
        return StepResult.failed(f"{label} failed")

    return Step(label=label, action=action, best_effort=best_effort, requires=tuple(requires),
                think_time_ms=think_time_ms, timeout_s=timeout_s)
