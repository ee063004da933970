"""Pure attendance rules — no database, no clock.

Everything here is a deterministic function of its arguments so the engine
can recompute a day any number of times and get the same answer.

Status precedence for a date:
  1. HOLIDAY   the date is a (non-optional) company holiday
  2. ON_LEAVE  an approved leave covers the date
  3. None      not a working day and nobody checked in (no record expected)
  4. both punches      PRESENT  (on time and worked >= full day)
                       HALF_DAY (worked >= half day)
                       ABSENT   (worked < half day)
  5. check-in only     HALF_DAY past shift end + missing-checkout cutoff,
                       otherwise PENDING
  6. no check-in       ABSENT once the local day has elapsed, otherwise PENDING
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from hr_ledger.common.constants import AttendanceStatus
from hr_ledger.config import settings


def as_utc(value: datetime) -> datetime:
    """Normalise to an aware UTC datetime (SQLite hands back naive values)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_date(value: datetime, tz: ZoneInfo) -> date:
    return as_utc(value).astimezone(tz).date()


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from *start* to *end* (floored, may be negative)."""
    return int((as_utc(end) - as_utc(start)).total_seconds() // 60)


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


# ── Shift rules ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class ShiftRules:
    """The subset of a shift the derivation needs."""

    start_time: time
    end_time: time
    break_minutes: int
    grace_minutes: int
    half_day_minutes: int
    full_day_minutes: int
    working_days: frozenset[int]
    shift_id: Optional[uuid.UUID] = None

    @classmethod
    def from_shift(cls, shift) -> "ShiftRules":
        return cls(
            start_time=shift.start_time,
            end_time=shift.end_time,
            break_minutes=shift.break_minutes,
            grace_minutes=shift.grace_minutes,
            half_day_minutes=shift.half_day_minutes,
            full_day_minutes=shift.full_day_minutes,
            working_days=frozenset(int(d) for d in shift.working_days or []),
            shift_id=shift.id,
        )

    @classmethod
    def default(cls) -> "ShiftRules":
        """Built-in rules for employees of companies without any shift."""
        return cls(
            start_time=_parse_hhmm(settings.DEFAULT_SHIFT_START),
            end_time=_parse_hhmm(settings.DEFAULT_SHIFT_END),
            break_minutes=settings.DEFAULT_BREAK_MINUTES,
            grace_minutes=settings.DEFAULT_GRACE_MINUTES,
            half_day_minutes=settings.DEFAULT_HALF_DAY_MINUTES,
            full_day_minutes=settings.DEFAULT_FULL_DAY_MINUTES,
            working_days=frozenset(settings.default_working_days),
        )

    @property
    def is_overnight(self) -> bool:
        return self.end_time <= self.start_time

    def is_working_day(self, day: date) -> bool:
        return day.weekday() in self.working_days

    def window(self, day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
        """Shift start and end on *day* as aware datetimes in *tz*."""
        start = datetime.combine(day, self.start_time, tzinfo=tz)
        end_day = day + timedelta(days=1) if self.is_overnight else day
        end = datetime.combine(end_day, self.end_time, tzinfo=tz)
        return start, end


# ── Minute calculations ─────────────────────────────────────────────

def late_minutes(check_in: datetime, rules: ShiftRules, day: date, tz: ZoneInfo) -> int:
    start, _ = rules.window(day, tz)
    grace_end = start + timedelta(minutes=rules.grace_minutes)
    return max(0, minutes_between(grace_end, check_in))


def early_leaving_minutes(check_out: datetime, rules: ShiftRules, day: date, tz: ZoneInfo) -> int:
    _, end = rules.window(day, tz)
    return max(0, minutes_between(check_out, end))


def total_work_minutes(check_in: datetime, check_out: datetime, rules: ShiftRules) -> int:
    return max(0, minutes_between(check_in, check_out) - rules.break_minutes)


def overtime_minutes(total: int, rules: ShiftRules) -> int:
    """Minutes worked beyond the shift's full day."""
    return max(0, total - rules.full_day_minutes)


# ── Derivation ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class DerivedDay:
    late_minutes: int
    early_leaving_minutes: int
    total_work_minutes: int
    status: Optional[AttendanceStatus]
    overtime_minutes: int = 0

    @property
    def expected(self) -> bool:
        """False on non-working days nobody worked: no record belongs there."""
        return self.status is not None


def derive_day(
    *,
    day: date,
    rules: ShiftRules,
    tz: ZoneInfo,
    now: datetime,
    check_in: Optional[datetime],
    check_out: Optional[datetime],
    is_holiday: bool,
    on_leave: bool,
    checkout_cutoff_minutes: Optional[int] = None,
) -> DerivedDay:
    """Derive minutes and status for one employee-day."""
    late = late_minutes(check_in, rules, day, tz) if check_in else 0
    early = early_leaving_minutes(check_out, rules, day, tz) if check_out else 0
    total = total_work_minutes(check_in, check_out, rules) if check_in and check_out else 0

    status = _derive_status(
        day=day, rules=rules, tz=tz, now=as_utc(now),
        check_in=check_in, check_out=check_out,
        late=late, total=total,
        is_holiday=is_holiday, on_leave=on_leave,
        cutoff=(
            settings.MISSING_CHECKOUT_CUTOFF_MINUTES
            if checkout_cutoff_minutes is None else checkout_cutoff_minutes
        ),
    )
    return DerivedDay(late, early, total, status, overtime_minutes(total, rules))


def _derive_status(
    *,
    day: date,
    rules: ShiftRules,
    tz: ZoneInfo,
    now: datetime,
    check_in: Optional[datetime],
    check_out: Optional[datetime],
    late: int,
    total: int,
    is_holiday: bool,
    on_leave: bool,
    cutoff: int,
) -> Optional[AttendanceStatus]:
    if is_holiday:
        return AttendanceStatus.holiday
    if on_leave:
        return AttendanceStatus.on_leave
    if check_in is None and not rules.is_working_day(day):
        return None

    if check_in is not None and check_out is not None:
        if late == 0 and total >= rules.full_day_minutes:
            return AttendanceStatus.present
        if total >= rules.half_day_minutes:
            return AttendanceStatus.half_day
        return AttendanceStatus.absent

    if check_in is not None:
        _, shift_end = rules.window(day, tz)
        if now >= shift_end + timedelta(minutes=cutoff):
            return AttendanceStatus.half_day
        return AttendanceStatus.pending

    # A lone check-out cannot be evaluated; treat the day as unattended.
    if now.astimezone(tz).date() > day:
        return AttendanceStatus.absent
    return AttendanceStatus.pending
