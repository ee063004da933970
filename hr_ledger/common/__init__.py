"""Common module — shared utilities for the attendance & leave ledger."""

from hr_ledger.common.audit import AuditTrail, create_audit_entry, entity_history
from hr_ledger.common.concurrency import hold_keys, ledger_key, run_ledger_write
from hr_ledger.common.constants import (
    DATE_FORMAT,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    PERMISSIONS,
    AttendanceSource,
    AttendanceStatus,
    BalanceAdjustmentSource,
    HolidayType,
    LeaveStatus,
    NotificationType,
    RegularizationStatus,
    UserRole,
)
from hr_ledger.common.exceptions import (
    AppException,
    ConflictError,
    ForbiddenException,
    InsufficientBalanceException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from hr_ledger.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    "entity_history",
    # Unit of work
    "hold_keys",
    "ledger_key",
    "run_ledger_write",
    # Constants / Enums
    "AttendanceSource",
    "AttendanceStatus",
    "BalanceAdjustmentSource",
    "HolidayType",
    "LeaveStatus",
    "NotificationType",
    "RegularizationStatus",
    "UserRole",
    "PERMISSIONS",
    "DATE_FORMAT",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConflictError",
    "ForbiddenException",
    "InsufficientBalanceException",
    "InvalidStateException",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
