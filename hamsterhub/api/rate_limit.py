"""
hamsterhub.api.rate_limit — Per-User Mutation Rate Limiting
============================================================

Throttles coin-moving endpoints (checkout, admin balance adjustments):
30 mutations per minute per authenticated user.

Uses a sliding-window counter keyed by the JWT ``sub`` claim and stored
in ``rate_limit_events`` so the window survives restarts.  Returns HTTP
429 with a ``Retry-After`` header when the limit is exceeded.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import Engine, delete, func, select
from sqlalchemy.orm import Session

from hamsterhub.api.deps import get_current_admin, get_current_user
from hamsterhub.database.models import RateLimitEvent

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 30
DEFAULT_WINDOW_SECONDS = 60

_MUTATION_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class MutationRateLimiter:
    """Sliding-window rate limiter keyed by subject (user) ID."""

    def __init__(
        self,
        max_requests: int = DEFAULT_RATE_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        *,
        engine: Engine,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.engine = engine

    def _normalize_dt(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def _prune(self, session: Session, subject_id: str, cutoff: datetime) -> None:
        session.execute(
            delete(RateLimitEvent).where(
                RateLimitEvent.subject_id == subject_id,
                RateLimitEvent.timestamp < cutoff,
            )
        )

    def check(self, subject_id: str) -> tuple[bool, dict[str, Any]]:
        """Return ``(allowed, info)``; info has ``remaining``, ``reset``, ``limit``."""
        now = datetime.now(UTC)
        cutoff = now - timedelta(seconds=self.window_seconds)

        with Session(self.engine) as session:
            self._prune(session, subject_id, cutoff)
            timestamps = session.scalars(
                select(RateLimitEvent.timestamp)
                .where(RateLimitEvent.subject_id == subject_id)
                .order_by(RateLimitEvent.timestamp.asc())
            ).all()
            session.commit()

        count = len(timestamps)
        if count >= self.max_requests:
            oldest = self._normalize_dt(timestamps[0])
            reset = (oldest + timedelta(seconds=self.window_seconds) - now).total_seconds()
            return False, {
                "remaining": 0,
                "reset": max(1, int(reset) + 1),
                "limit": self.max_requests,
            }

        return True, {
            "remaining": self.max_requests - count,
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def record(self, subject_id: str) -> dict[str, Any]:
        """Record one request and return the updated info dict."""
        now = datetime.now(UTC)
        cutoff = now - timedelta(seconds=self.window_seconds)

        with Session(self.engine) as session:
            self._prune(session, subject_id, cutoff)
            session.add(RateLimitEvent(subject_id=subject_id, timestamp=now))
            session.flush()
            count = session.scalar(
                select(func.count())
                .select_from(RateLimitEvent)
                .where(RateLimitEvent.subject_id == subject_id)
            ) or 0
            session.commit()

        return {
            "remaining": max(0, self.max_requests - count),
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def reset(self, subject_id: str | None = None) -> None:
        """Clear rate limit state. If subject_id is None, clear all."""
        with Session(self.engine) as session:
            stmt = delete(RateLimitEvent)
            if subject_id is not None:
                stmt = stmt.where(RateLimitEvent.subject_id == subject_id)
            session.execute(stmt)
            session.commit()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------
_limiter: MutationRateLimiter | None = None


def get_rate_limiter() -> MutationRateLimiter:
    if _limiter is None:
        raise RuntimeError("Rate limiter not configured — call configure_rate_limiter() first")
    return _limiter


def configure_rate_limiter(
    *,
    engine: Engine,
    max_requests: int = DEFAULT_RATE_LIMIT,
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
) -> MutationRateLimiter:
    global _limiter
    _limiter = MutationRateLimiter(
        max_requests=max_requests,
        window_seconds=window_seconds,
        engine=engine,
    )
    return _limiter


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------
async def _enforce(request: Request, subject_id: str) -> None:
    if request.method not in _MUTATION_METHODS:
        return

    limiter = get_rate_limiter()
    allowed, info = await asyncio.to_thread(limiter.check, subject_id)
    if not allowed:
        logger.warning(
            "Rate limit exceeded for %s: %d requests in %ds",
            subject_id, limiter.max_requests, limiter.window_seconds,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limit_exceeded",
                "message": (
                    f"Rate limit exceeded: {limiter.max_requests}"
                    " requests per minute."
                ),
                "retry_after": info["reset"],
            },
            headers={"Retry-After": str(info["reset"])},
        )

    await asyncio.to_thread(limiter.record, subject_id)


async def rate_limited_user(
    request: Request,
    user: Annotated[dict, Depends(get_current_user)],
) -> dict:
    """``get_current_user`` plus the per-user mutation throttle."""
    await _enforce(request, str(user["sub"]))
    return user


async def rate_limited_admin(
    request: Request,
    admin: Annotated[dict, Depends(get_current_admin)],
) -> dict:
    """``get_current_admin`` plus the per-user mutation throttle."""
    await _enforce(request, str(admin["sub"]))
    return admin
