from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.engine import Connection

from ul_core.db.schema import connection_scope

logger = logging.getLogger(__name__)

HARD_LIMIT_FACTOR = 1.3
NEAR_LIMIT_FACTOR = 0.8
DENIED_LIMIT_EXCEEDED = "limit_exceeded"


@dataclass(slots=True, frozen=True)
class UsageCheck:
    current_requests: int
    limit: int
    month: str
    is_request_allowed: bool
    near_limit: bool
    exceeds_limit: bool
    exceeds_hard_limit: bool
    hard_limit_reached_now: bool


@dataclass(slots=True, frozen=True)
class RequestEvent:
    id: str
    event: str
    namespace: str | None
    language_code: str | None
    denied_reason: str | None
    response_size: int | None
    created_at: str


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def current_month(now: datetime | None = None) -> str:
    moment = now or _utc_now()
    return f"{moment.year}-{moment.month:02d}"


def check_and_record_request(connection: Connection, *, limit: int, month: str | None = None) -> UsageCheck:
    """Count one request against the monthly limit.

    The counter restarts when the month changes. Requests are refused once
    the count would pass 130% of the limit, rounded half up; a refused
    request is not counted.
    """

    active_month = month or current_month()
    hard_limit = _round_half_up(limit * HARD_LIMIT_FACTOR)

    row = connection.execute(text("SELECT month, requests FROM request_usage WHERE id = 1")).first()

    is_request_allowed = True
    hard_limit_reached_now = False
    current_requests = 1

    if row is not None and str(row[0]) == active_month:
        current_requests = int(row[1]) + 1
        if current_requests == hard_limit:
            hard_limit_reached_now = True
        elif current_requests > hard_limit:
            is_request_allowed = False
            current_requests = int(row[1])

    if is_request_allowed:
        connection.execute(
            text(
                """
                INSERT INTO request_usage(id, month, requests) VALUES (1, :month, :requests)
                ON CONFLICT(id) DO UPDATE SET month = excluded.month, requests = excluded.requests
                """
            ),
            {"month": active_month, "requests": current_requests},
        )

    check = UsageCheck(
        current_requests=current_requests,
        limit=limit,
        month=active_month,
        is_request_allowed=is_request_allowed,
        near_limit=current_requests == _round_half_up(limit * NEAR_LIMIT_FACTOR),
        exceeds_limit=current_requests == limit,
        exceeds_hard_limit=current_requests == hard_limit,
        hard_limit_reached_now=hard_limit_reached_now,
    )

    if check.near_limit:
        logger.warning("Request usage reached 80%% of the monthly limit (%d/%d)", current_requests, limit)
    if check.exceeds_limit:
        logger.warning("Request usage reached the monthly limit (%d/%d)", current_requests, limit)
    if check.hard_limit_reached_now:
        logger.warning(
            "Request usage reached 130%% of the monthly limit (%d/%d); further requests are refused",
            current_requests,
            limit,
        )
    if not is_request_allowed:
        logger.info("Request refused: monthly limit exceeded (%d/%d)", current_requests, limit)

    return check


def record_request_event(
    connection: Connection,
    *,
    event: str,
    namespace: str | None = None,
    language_code: str | None = None,
    denied_reason: str | None = None,
    response_size: int | None = None,
) -> str:
    event_id = str(uuid4())
    connection.execute(
        text(
            """
            INSERT INTO request_events(id, event, namespace, language_code, denied_reason, response_size, created_at)
            VALUES (:id, :event, :namespace, :language_code, :denied_reason, :response_size, :created_at)
            """
        ),
        {
            "id": event_id,
            "event": event,
            "namespace": namespace,
            "language_code": language_code,
            "denied_reason": denied_reason,
            "response_size": response_size,
            "created_at": _utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        },
    )
    return event_id


def list_request_events(
    *,
    db_path: Path | None = None,
    connection: Connection | None = None,
    limit: int = 100,
    denied_only: bool = False,
) -> list[RequestEvent]:
    with connection_scope(db_path=db_path, connection=connection) as active:
        rows = active.execute(
            text(
                """
                SELECT * FROM request_events
                WHERE (:denied_only = 0 OR denied_reason IS NOT NULL)
                ORDER BY created_at DESC, id
                LIMIT :limit
                """
            ),
            {"denied_only": 1 if denied_only else 0, "limit": limit},
        ).mappings().all()
    return [
        RequestEvent(
            id=str(row["id"]),
            event=str(row["event"]),
            namespace=row["namespace"],
            language_code=row["language_code"],
            denied_reason=row["denied_reason"],
            response_size=row["response_size"],
            created_at=str(row["created_at"]),
        )
        for row in rows
    ]
