"""Pure response checks composed into step actions.

Every check is a predicate over a ``Response`` returning ``(ok, message)``;
``expect`` runs a list of them and raises ``StepFailure`` on the first miss.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Optional, Tuple

from .client import Response
from .utils.errors import StepFailure


Check = Callable[[Response], Tuple[bool, str]]

_MISSING = object()


def status_is(*codes: int) -> Check:
    """Status code is one of ``codes``."""
    def check(response: Response) -> Tuple[bool, str]:
        ok = response.status_code in codes
        return ok, f"status {response.status_code}, expected {'/'.join(str(c) for c in codes)}"
    return check


def has_field(path: str) -> Check:
    """JSON body holds a non-empty value at the dotted ``path``."""
    def check(response: Response) -> Tuple[bool, str]:
        try:
            value = dig(response.json(), path)
        except StepFailure as e:
            return False, str(e)
        return value not in (_MISSING, None, ""), f"missing field '{path}'"
    return check


def faster_than(limit_ms: float) -> Check:
    """Response came back within ``limit_ms``."""
    def check(response: Response) -> Tuple[bool, str]:
        return response.duration_ms < limit_ms, f"took {response.duration_ms:.0f}ms, budget {limit_ms:.0f}ms"
    return check


def dig(data: Any, path: str, default: Any = _MISSING) -> Any:
    """Follow a dotted path through nested dicts (and list indexes)."""
    current = data
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return default
    return current


def require_field(response: Response, path: str) -> Any:
    """Extract a field a later step depends on; a missing one is a step failure."""
    value = dig(response.json(), path, default=None)
    if value is None:
        raise StepFailure(f"missing field '{path}'")
    return value


def evaluate(response: Response, checks: Iterable[Check]) -> Optional[str]:
    """Return the first failure message, or None when every check passes."""
    for check in checks:
        ok, message = check(response)
        if not ok:
            return message
    return None


def expect(response: Response, *checks: Check) -> Response:
    failure = evaluate(response, checks)
    if failure is not None:
        raise StepFailure(failure)
    return response
