"""Steps against the schedule backend: auth, users, day plans, schedules, notifications."""

from __future__ import annotations

import logging
import random
import string
import time
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from ..checks import expect, faster_than, has_field, require_field, status_is
from ..client import Response
from ..core.journey import Context, Step
from ..steps import bearer, request_step
from ..utils.errors import SetupFailure

logger = logging.getLogger(__name__)


DEFAULT_PASSWORD = "Test1234!"
DEFAULT_AI_TIMEOUT_S = 30.0


def random_string(length: int, rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    return "".join(rng.choice(string.ascii_lowercase + string.digits) for _ in range(length))


def random_email() -> str:
    """Unique per call; not derived from the run seed so accounts never collide."""
    return f"loadtest_{uuid.uuid4().hex[:8]}_{int(time.time() * 1000)}@test.com"


def clock_time(after_minutes: int = 0) -> str:
    """HH:MM, ``after_minutes`` from now."""
    return (datetime.now() + timedelta(minutes=after_minutes)).strftime("%H:%M")


def signup_payload(email: Optional[str] = None) -> Dict[str, Any]:
    return {
        "email": email or random_email(),
        "password": DEFAULT_PASSWORD,
        "nickname": "testUser",
        "gender": "MALE",
        "birth": "1990.01.01",
        "focusTimeZone": "MORNING",
        "dayEndTime": "23:00",
        "profileImageKey": None,
        "terms": [{"termsId": terms_id, "isAgreed": True} for terms_id in (1, 2, 3)],
    }


def schedule_payload(
    title_prefix: str = "Load Test",
    *,
    start_in_minutes: int = 0,
    length_minutes: int = 60,
    time_range: str = "HOUR_1_TO_2",
    focus_level: Optional[int] = None,
    urgent_chance: float = 0.0,
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    rng = rng or random
    return {
        "type": "FLEX",
        "title": f"{title_prefix} {random_string(5, rng)}",
        "startAt": clock_time(start_in_minutes),
        "endAt": clock_time(start_in_minutes + length_minutes),
        "estimatedTimeRange": time_range,
        "focusLevel": focus_level if focus_level is not None else rng.randint(1, 5),
        "isUrgent": rng.random() < urgent_chance,
    }


def _store_token(response: Response, context: Context) -> None:
    context["access_token"] = require_field(response, "data.accessToken")


def _store_signup(response: Response, context: Context) -> None:
    context["user_id"] = require_field(response, "data.userId")
    _store_token(response, context)


def _store_day_plan(response: Response, context: Context) -> None:
    context["day_plan_id"] = require_field(response, "data.dayPlanId")


def _store_schedule(response: Response, context: Context) -> None:
    schedule_id = require_field(response, "data.scheduleId")
    context["schedule_id"] = schedule_id
    created = context.data.setdefault("schedule_ids", [])
    created.append(schedule_id)
    context[f"schedule_id_{len(created)}"] = schedule_id


def _schedule_path(suffix: str = "") -> Any:
    return lambda ctx: f"/schedule/{ctx['schedule_id']}{suffix}"


def signup(think_time_ms: Tuple[int, int] = (0, 0)) -> Step:
    """POST /users with a fresh random account; stores user id and access token."""
    return request_step(
        "signup",
        "POST",
        "/users",
        body=lambda ctx: signup_payload(),
        checks=[status_is(200), has_field("data.userId")],
        extract=_store_signup,
        think_time_ms=think_time_ms,
    )


def login(email: str, password: str = DEFAULT_PASSWORD, think_time_ms: Tuple[int, int] = (0, 0)) -> Step:
    """POST /token for an existing account."""
    return request_step(
        "login",
        "POST",
        "/token",
        body={"email": email, "password": password},
        checks=[status_is(200), has_field("data.accessToken")],
        extract=_store_token,
        think_time_ms=think_time_ms,
    )


def get_profile(think_time_ms: Tuple[int, int] = (0, 0)) -> Step:
    return request_step(
        "get_profile",
        "GET",
        "/users",
        headers=bearer,
        checks=[status_is(200), has_field("data.email")],
        think_time_ms=think_time_ms,
    )


def search_users(nickname: str = "User", page: int = 1, size: int = 10,
                 think_time_ms: Tuple[int, int] = (0, 0)) -> Step:
    return request_step(
        "search_users",
        "GET",
        f"/users/nickname?nickname={nickname}&page={page}&size={size}",
        headers=bearer,
        checks=[status_is(200)],
        think_time_ms=think_time_ms,
    )


def get_schedules_by_date(think_time_ms: Tuple[int, int] = (0, 0), day: Optional[date] = None) -> Step:
    """GET the day plan for today; the day plan id is required by every schedule write."""
    return request_step(
        "get_schedules_by_date",
        "GET",
        lambda ctx: f"/day-plan/schedule?date={(day or date.today()).isoformat()}&page=1&size=10",
        headers=bearer,
        checks=[status_is(200), has_field("data.dayPlanId")],
        extract=_store_day_plan,
        think_time_ms=think_time_ms,
    )


def get_schedules(page: int = 1, size: int = 10, think_time_ms: Tuple[int, int] = (0, 0)) -> Step:
    return request_step(
        "get_schedules",
        "GET",
        lambda ctx: f"/day-plan/schedule?date={date.today().isoformat()}&page={page}&size={size}",
        headers=bearer,
        checks=[status_is(200)],
        think_time_ms=think_time_ms,
    )


def create_schedule(title_prefix: str = "Load Test", think_time_ms: Tuple[int, int] = (0, 0),
                    **payload_options: Any) -> Step:
    """POST a schedule into the stored day plan; stores the new schedule id."""
    return request_step(
        "create_schedule",
        "POST",
        lambda ctx: f"/day-plan/{ctx['day_plan_id']}/schedule",
        body=lambda ctx: schedule_payload(title_prefix, rng=ctx.rng, **payload_options),
        headers=bearer,
        checks=[status_is(200), has_field("data.scheduleId")],
        extract=_store_schedule,
        think_time_ms=think_time_ms,
    )


def update_schedule(think_time_ms: Tuple[int, int] = (0, 0)) -> Step:
    return request_step(
        "update_schedule",
        "PUT",
        _schedule_path(),
        body=lambda ctx: schedule_payload("Updated", rng=ctx.rng),
        headers=bearer,
        checks=[status_is(204)],
        think_time_ms=think_time_ms,
    )


def update_schedule_status(status: str = "DONE", think_time_ms: Tuple[int, int] = (0, 0)) -> Step:
    return request_step(
        "update_schedule_status",
        "PATCH",
        _schedule_path("/status"),
        body={"status": status},
        headers=bearer,
        checks=[status_is(204)],
        think_time_ms=think_time_ms,
    )


def delete_schedule(think_time_ms: Tuple[int, int] = (0, 0)) -> Step:
    """Cleanup: runs even after a failure whenever a schedule was created."""
    return request_step(
        "delete_schedule",
        "DELETE",
        _schedule_path(),
        headers=bearer,
        checks=[status_is(204)],
        think_time_ms=think_time_ms,
        best_effort=True,
        requires=("access_token", "schedule_id"),
    )


def delete_created_schedule(number: int) -> Step:
    """Cleanup for the ``number``-th schedule (1-based) created in this iteration.

    One call per step, so each delete gets its own timeout and a failed
    delete does not stop the next one.
    """
    key = f"schedule_id_{number}"
    return request_step(
        "delete_schedule",
        "DELETE",
        lambda ctx: f"/schedule/{ctx[key]}",
        headers=bearer,
        checks=[status_is(204)],
        best_effort=True,
        requires=("access_token", key),
    )


def ai_arrangement(timeout_s: float = DEFAULT_AI_TIMEOUT_S, think_time_ms: Tuple[int, int] = (0, 0)) -> Step:
    """AI schedule arrangement for the stored day plan; slow, so it has its own timeout."""
    return request_step(
        "ai_arrangement",
        "POST",
        lambda ctx: f"/day-plan/{ctx['day_plan_id']}/schedules/ai-arrangement",
        headers=bearer,
        checks=[status_is(200, 201)],
        timeout_s=timeout_s,
        think_time_ms=think_time_ms,
    )


def get_notifications(page: int = 1, size: int = 10, think_time_ms: Tuple[int, int] = (0, 0)) -> Step:
    return request_step(
        "get_notifications",
        "GET",
        f"/notifications?page={page}&size={size}",
        headers=bearer,
        checks=[status_is(200)],
        think_time_ms=think_time_ms,
    )


def logout() -> Step:
    """DELETE /token; runs even after a failure once a token was obtained."""
    return request_step(
        "logout",
        "DELETE",
        "/token",
        headers=bearer,
        checks=[status_is(204)],
        best_effort=True,
        requires=("access_token",),
    )


async def health_check(transport: Any, budget_ms: float = 1000.0) -> Dict[str, Any]:
    """Setup hook: the target must answer ``GET /`` with 200 before any VU starts."""
    try:
        response = await transport.call("GET", "/")
        expect(response, status_is(200), faster_than(budget_ms))
    except Exception as e:
        raise SetupFailure(f"Server health check failed: {e}") from e
    logger.info(f"Health check passed in {response.duration_ms:.0f}ms")
    return {"started_at": datetime.now().isoformat(), "health_check_ms": response.duration_ms}
