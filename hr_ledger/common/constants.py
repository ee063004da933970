"""Enums and constants for the attendance & leave ledger — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr_admin = "hr_admin"
    system_admin = "system_admin"


# ── Attendance ──────────────────────────────────────────────────────

class AttendanceStatus(str, enum.Enum):
    present = "present"
    absent = "absent"
    half_day = "half_day"
    on_leave = "on_leave"
    holiday = "holiday"
    pending = "pending"


class AttendanceSource(str, enum.Enum):
    """What created or last rewrote an attendance record."""

    check_in = "check_in"
    regularization = "regularization"
    leave = "leave"
    day_close = "day_close"


class HolidayType(str, enum.Enum):
    national = "national"
    regional = "regional"
    company = "company"
    optional = "optional"


class RegularizationStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


class LeaveDayKind(str, enum.Enum):
    """Classification of each date inside a leave request's range."""

    working = "working"
    weekend = "weekend"
    holiday = "holiday"


class HalfDayType(str, enum.Enum):
    first_half = "first_half"
    second_half = "second_half"


class BalanceAdjustmentSource(str, enum.Enum):
    seed = "seed"
    manual = "manual"
    accrual = "accrual"
    leave_debit = "leave_debit"
    leave_credit = "leave_credit"


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    regularization_submitted = "regularization_submitted"
    regularization_resolved = "regularization_resolved"
    leave_requested = "leave_requested"
    leave_approved = "leave_approved"
    leave_rejected = "leave_rejected"
    leave_cancelled = "leave_cancelled"
    balance_adjusted = "balance_adjusted"


# ── Permissions (role → list of permission strings) ─────────────────

PERMISSIONS: dict[UserRole, list[str]] = {
    UserRole.employee: [
        "attendance:read_own",
        "leave:request",
        "leave:read_own",
        "notification:read_own",
    ],
    UserRole.manager: [
        "attendance:read_own",
        "attendance:read_all",
        "attendance:regularize_approve",
        "leave:request",
        "leave:read_own",
        "leave:read_all",
        "leave:approve",
        "notification:read_own",
    ],
    UserRole.hr_admin: [
        "attendance:read_own",
        "attendance:read_all",
        "attendance:act_on_behalf",
        "attendance:regularize_approve",
        "attendance:configure",
        "attendance:lock",
        "employee:manage",
        "leave:request",
        "leave:read_own",
        "leave:read_all",
        "leave:approve",
        "leave:adjust_balance",
        "leave:configure",
        "notification:read_own",
        "notification:dispatch",
    ],
    UserRole.system_admin: [
        "attendance:read_own",
        "attendance:read_all",
        "attendance:act_on_behalf",
        "attendance:regularize_approve",
        "attendance:configure",
        "attendance:lock",
        "employee:manage",
        "leave:request",
        "leave:read_own",
        "leave:read_all",
        "leave:approve",
        "leave:adjust_balance",
        "leave:configure",
        "notification:read_own",
        "notification:dispatch",
    ],
}

# ── Misc ────────────────────────────────────────────────────────────

DATE_FORMAT = "%Y-%m-%d"
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
MAX_LEAVE_RANGE_DAYS = 366
MAX_DATE_RANGE_DAYS = 92
