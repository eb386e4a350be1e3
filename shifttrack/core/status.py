"""
Shift status engine.

``derive_status`` classifies a shift from its segments and the time of day;
``completion_decision`` is the separate auto-completion policy; and
``resolve_shift_status`` combines the two with the shift's calendar date.
Every caller (API reads, writes, the status sweep) goes through
``resolve_shift_status`` so the priority list exists exactly once.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from shifttrack.core.exceptions import MalformedTimeError
from shifttrack.core.timeutils import END_OF_DAY, current_time_in, minutes_after

logger = logging.getLogger(__name__)

Segment = Mapping[str, Any]


class ShiftStatus(str, Enum):
    """Lifecycle states, in progression order."""

    DRAFT = "DRAFT"
    OFFLINE = "OFFLINE"
    ACTIVE = "ACTIVE"
    ON_BREAK = "ON BREAK"
    COMPLETED = "COMPLETED"

    @classmethod
    def parse(cls, value: object) -> ShiftStatus | None:
        """Lenient lookup: ``"ON_BREAK"``, ``"on break"`` and legacy ``"BREAK"`` all work."""
        if isinstance(value, cls):
            return value
        if value is None:
            return None
        key = str(value).strip().upper().replace("_", " ")
        if key == "BREAK":
            return cls.ON_BREAK
        for member in cls:
            if member.value == key:
                return member
        return None


def has_open_segment(segments: Sequence[Segment]) -> bool:
    return any(not seg.get("endTime") for seg in segments)


def _in_gap(segments: Sequence[Segment], now: str, rollover: bool) -> bool:
    for current, following in zip(segments, segments[1:]):
        end, next_start = current.get("endTime"), following.get("startTime")
        if not end or not next_start:
            continue
        if (
            minutes_after(now, end, rollover=rollover) > 0
            and minutes_after(now, next_start, rollover=rollover) < 0
        ):
            return True
    return False


def _classify(segments: Sequence[Segment], now: str, rollover: bool) -> ShiftStatus:
    if minutes_after(now, segments[0].get("startTime"), rollover=rollover) < 0:
        return ShiftStatus.OFFLINE
    if has_open_segment(segments):
        return ShiftStatus.ACTIVE
    if _in_gap(segments, now, rollover):
        return ShiftStatus.ON_BREAK
    if minutes_after(now, segments[-1].get("endTime"), rollover=rollover) >= 0:
        return ShiftStatus.COMPLETED
    return ShiftStatus.ON_BREAK


def derive_status(
    segments: Sequence[Segment] | None,
    now: str | None = None,
    *,
    timezone: str | None = None,
    previous: object = None,
    rollover: bool = True,
) -> ShiftStatus:
    """Classify a shift at *now* (``HH:MM``).

    Never raises on bad data: a malformed time is logged and *previous*
    (or DRAFT) is returned instead.
    """
    if not segments:
        return ShiftStatus.DRAFT
    if now is None:
        now = current_time_in(timezone)
    try:
        return _classify(segments, now, rollover)
    except MalformedTimeError as exc:
        fallback = ShiftStatus.parse(previous) or ShiftStatus.DRAFT
        logger.warning(
            "Cannot classify shift at %r: %s; falling back to %s", now, exc, fallback.value
        )
        return fallback


@dataclass(frozen=True)
class CompletionDecision:
    should_complete: bool
    reason: str


def completion_decision(
    status: object,
    segments: Sequence[Segment] | None,
    now: str,
    grace_minutes: int,
    *,
    rollover: bool = True,
) -> CompletionDecision:
    """Decide whether a shift whose segments are all closed may auto-complete.

    Completion waits until *now* is more than *grace_minutes* past the last
    closed segment, so a short break does not end the shift.
    """
    current = ShiftStatus.parse(status)
    if current is ShiftStatus.COMPLETED:
        return CompletionDecision(True, "already completed")
    if current is ShiftStatus.DRAFT or not segments:
        return CompletionDecision(False, "draft shifts are never auto-completed")
    if has_open_segment(segments):
        return CompletionDecision(False, "a segment is still open")

    last_end = segments[-1].get("endTime")
    try:
        elapsed = minutes_after(now, last_end, rollover=rollover)
    except MalformedTimeError as exc:
        logger.warning("Completion check skipped: %s", exc)
        return CompletionDecision(False, "last end time is unreadable")

    if elapsed > grace_minutes:
        return CompletionDecision(True, f"{elapsed} minutes past last activity")
    return CompletionDecision(False, f"within the {grace_minutes}-minute grace period")


def resolve_shift_status(
    segments: Sequence[Segment] | None,
    stored: object,
    *,
    shift_date: str,
    today: str,
    now: str,
    grace_minutes: int,
    finalized: bool = False,
) -> ShiftStatus:
    """Status the service reports and persists for one shift.

    Dates are ``YYYY-MM-DD`` strings in the shift's timezone, so the day
    rollover heuristic is not needed here: past days are evaluated at the end
    of that day and later days are not evaluated against today's clock.
    """
    if shift_date > today:
        return ShiftStatus.OFFLINE if segments else ShiftStatus.DRAFT

    reference = END_OF_DAY if shift_date < today else now
    computed = derive_status(segments, reference, previous=stored, rollover=False)

    if finalized and segments:
        # Explicitly completed; only a shift that has not started yet disagrees.
        return computed if computed is ShiftStatus.OFFLINE else ShiftStatus.COMPLETED

    if (
        computed is ShiftStatus.COMPLETED
        and shift_date == today
        and ShiftStatus.parse(stored) is not ShiftStatus.COMPLETED
    ):
        # All segments are closed here, so the shift is on a break until the
        # policy says otherwise; the stored value may be a stale DRAFT.
        decision = completion_decision(
            ShiftStatus.ON_BREAK, segments, now, grace_minutes, rollover=False
        )
        if not decision.should_complete:
            logger.debug("Holding shift on break: %s", decision.reason)
            return ShiftStatus.ON_BREAK
    return computed
