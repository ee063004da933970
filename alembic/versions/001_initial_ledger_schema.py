"""001 – Initial ledger schema: tenants, attendance, regularization, leave, outbox.

Revision ID: 001_initial_ledger_schema
Revises:
Create Date: 2026-10-05 10:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_ledger_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("holiday_type", ["national", "regional", "company", "optional"]),
    (
        "attendance_status",
        ["present", "absent", "half_day", "on_leave", "holiday", "pending"],
    ),
    ("attendance_source", ["check_in", "regularization", "leave", "day_close"]),
    ("regularization_status", ["pending", "approved", "rejected"]),
    ("leave_status", ["pending", "approved", "rejected", "cancelled"]),
    ("half_day_type", ["first_half", "second_half"]),
    (
        "balance_adjustment_source",
        ["seed", "manual", "accrual", "leave_debit", "leave_credit"],
    ),
    (
        "notification_type",
        [
            "regularization_submitted",
            "regularization_resolved",
            "leave_requested",
            "leave_approved",
            "leave_rejected",
            "leave_cancelled",
            "balance_adjusted",
        ],
    ),
]

TABLES = [
    "notifications",
    "audit_trail",
    "leave_requests",
    "leave_balance_adjustments",
    "leave_balances",
    "leave_types",
    "regularization_requests",
    "attendance_records",
    "holidays",
    "employees",
    "shifts",
    "companies",
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. companies ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE companies (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(150) NOT NULL,
            timezone    VARCHAR(50)  NOT NULL DEFAULT 'UTC',
            is_active   BOOLEAN      NOT NULL DEFAULT TRUE,
            created_at  TIMESTAMPTZ  NOT NULL DEFAULT NOW()
        )
    """)

    # ── 2. shifts ─────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE shifts (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id        UUID NOT NULL REFERENCES companies(id),
            name              VARCHAR(100) NOT NULL,
            code              VARCHAR(20)  NOT NULL,
            start_time        TIME NOT NULL,
            end_time          TIME NOT NULL,
            break_minutes     INTEGER NOT NULL DEFAULT 60,
            grace_minutes     INTEGER NOT NULL DEFAULT 15,
            half_day_minutes  INTEGER NOT NULL DEFAULT 240,
            full_day_minutes  INTEGER NOT NULL DEFAULT 480,
            working_days      JSONB   NOT NULL DEFAULT '[0, 1, 2, 3, 4]',
            is_default        BOOLEAN NOT NULL DEFAULT FALSE,
            is_active         BOOLEAN NOT NULL DEFAULT TRUE,
            created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_shift_code_company UNIQUE (company_id, code)
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX uq_shift_default_per_company
            ON shifts (company_id) WHERE is_default
    """)

    # ── 3. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id      UUID NOT NULL REFERENCES companies(id),
            employee_code   VARCHAR(20)  NOT NULL,
            first_name      VARCHAR(100) NOT NULL,
            last_name       VARCHAR(100),
            email           VARCHAR(255) NOT NULL,
            department      VARCHAR(150),
            shift_id        UUID REFERENCES shifts(id),
            is_active       BOOLEAN NOT NULL DEFAULT TRUE,
            deactivated_at  TIMESTAMPTZ,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_employee_code_company UNIQUE (company_id, employee_code)
        )
    """)
    op.execute("CREATE INDEX ix_employees_company_active ON employees (company_id, is_active)")

    # ── 4. holidays ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE holidays (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id  UUID NOT NULL REFERENCES companies(id),
            date        DATE NOT NULL,
            name        VARCHAR(200) NOT NULL,
            type        holiday_type NOT NULL DEFAULT 'national',
            created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_holiday_company_date UNIQUE (company_id, date)
        )
    """)

    # ── 5. attendance_records ─────────────────────────────────────────────
    op.execute("""
        CREATE TABLE attendance_records (
            id                     UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id             UUID NOT NULL REFERENCES companies(id),
            employee_id            UUID NOT NULL REFERENCES employees(id),
            date                   DATE NOT NULL,
            shift_id               UUID REFERENCES shifts(id),
            check_in_time          TIMESTAMPTZ,
            check_out_time         TIMESTAMPTZ,
            check_in_location      JSONB,
            check_out_location     JSONB,
            late_minutes           INTEGER NOT NULL DEFAULT 0,
            early_leaving_minutes  INTEGER NOT NULL DEFAULT 0,
            total_work_minutes     INTEGER NOT NULL DEFAULT 0,
            overtime_minutes       INTEGER NOT NULL DEFAULT 0,
            status                 attendance_status NOT NULL DEFAULT 'pending',
            source                 attendance_source NOT NULL DEFAULT 'check_in',
            is_regularized         BOOLEAN NOT NULL DEFAULT FALSE,
            is_locked              BOOLEAN NOT NULL DEFAULT FALSE,
            locked_at              TIMESTAMPTZ,
            locked_by              UUID REFERENCES employees(id),
            created_at             TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at             TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_attendance_employee_date UNIQUE (employee_id, date)
        )
    """)
    op.execute("CREATE INDEX ix_attendance_company_date ON attendance_records (company_id, date)")

    # ── 6. regularization_requests ────────────────────────────────────────
    op.execute("""
        CREATE TABLE regularization_requests (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id          UUID NOT NULL REFERENCES companies(id),
            employee_id         UUID NOT NULL REFERENCES employees(id),
            date                DATE NOT NULL,
            proposed_check_in   TIMESTAMPTZ,
            proposed_check_out  TIMESTAMPTZ,
            reason              TEXT NOT NULL,
            status              regularization_status NOT NULL DEFAULT 'pending',
            submitted_by        UUID REFERENCES employees(id),
            resolved_by         UUID REFERENCES employees(id),
            resolved_at         TIMESTAMPTZ,
            review_remarks      TEXT,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX uq_regularization_pending_employee_date
            ON regularization_requests (employee_id, date) WHERE status = 'pending'
    """)
    op.execute("""
        CREATE INDEX ix_regularization_company_status
            ON regularization_requests (company_id, status)
    """)

    # ── 7. leave_types ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id                    UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id            UUID NOT NULL REFERENCES companies(id),
            code                  VARCHAR(10)  NOT NULL,
            name                  VARCHAR(100) NOT NULL,
            default_days          NUMERIC(7, 2) NOT NULL DEFAULT 0,
            color                 VARCHAR(7),
            is_paid               BOOLEAN NOT NULL DEFAULT TRUE,
            requires_document     BOOLEAN NOT NULL DEFAULT FALSE,
            requires_approval     BOOLEAN NOT NULL DEFAULT TRUE,
            max_days              NUMERIC(7, 2),
            enforce_non_negative  BOOLEAN NOT NULL DEFAULT TRUE,
            allow_backdated       BOOLEAN NOT NULL DEFAULT FALSE,
            is_active             BOOLEAN NOT NULL DEFAULT TRUE,
            created_at            TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_leave_type_code_company UNIQUE (company_id, code)
        )
    """)

    # ── 8. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id    UUID NOT NULL REFERENCES employees(id),
            leave_type_id  UUID NOT NULL REFERENCES leave_types(id),
            balance        NUMERIC(7, 2) NOT NULL DEFAULT 0,
            updated_at     TIMESTAMPTZ,
            CONSTRAINT uq_leave_balance UNIQUE (employee_id, leave_type_id)
        )
    """)

    # ── 9. leave_balance_adjustments (append-only) ────────────────────────
    op.execute("""
        CREATE TABLE leave_balance_adjustments (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id    UUID NOT NULL REFERENCES employees(id),
            leave_type_id  UUID NOT NULL REFERENCES leave_types(id),
            delta          NUMERIC(7, 2) NOT NULL,
            balance_after  NUMERIC(7, 2) NOT NULL,
            reason         TEXT NOT NULL,
            source         balance_adjustment_source NOT NULL DEFAULT 'manual',
            reference_id   UUID,
            actor_id       UUID REFERENCES employees(id),
            created_at     TIMESTAMPTZ NOT NULL,
            CONSTRAINT ck_adjustment_nonzero CHECK (delta <> 0)
        )
    """)
    op.execute("""
        CREATE INDEX ix_adjustment_employee_type
            ON leave_balance_adjustments (employee_id, leave_type_id)
    """)

    # ── 10. leave_requests ────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id      UUID NOT NULL REFERENCES companies(id),
            employee_id     UUID NOT NULL REFERENCES employees(id),
            leave_type_id   UUID NOT NULL REFERENCES leave_types(id),
            start_date      DATE NOT NULL,
            end_date        DATE NOT NULL,
            day_details     JSONB NOT NULL DEFAULT '{}',
            total_days      NUMERIC(7, 2) NOT NULL,
            is_half_day     BOOLEAN NOT NULL DEFAULT FALSE,
            half_day_type   half_day_type,
            reason          TEXT,
            document_url    VARCHAR(500),
            status          leave_status NOT NULL DEFAULT 'pending',
            reviewed_by     UUID REFERENCES employees(id),
            reviewed_at     TIMESTAMPTZ,
            review_remarks  TEXT,
            cancelled_by    UUID REFERENCES employees(id),
            cancelled_at    TIMESTAMPTZ,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_leave_dates CHECK (start_date <= end_date),
            CONSTRAINT ck_leave_half_day CHECK (NOT is_half_day OR start_date = end_date)
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_requests_employee_dates
            ON leave_requests (employee_id, start_date, end_date)
    """)
    op.execute("CREATE INDEX ix_leave_requests_company_status ON leave_requests (company_id, status)")

    # ── 11. audit_trail ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id     UUID REFERENCES employees(id),
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail (actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail (entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail (created_at)")

    # ── 12. notifications (outbox) ────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id     UUID NOT NULL REFERENCES companies(id),
            employee_id    UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            type           notification_type NOT NULL,
            title          VARCHAR(200) NOT NULL,
            message        TEXT NOT NULL,
            entity_type    VARCHAR(50),
            entity_id      UUID,
            is_dispatched  BOOLEAN NOT NULL DEFAULT FALSE,
            dispatched_at  TIMESTAMPTZ,
            created_at     TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX ix_notifications_pending
            ON notifications (company_id, is_dispatched, created_at)
    """)
    op.execute("CREATE INDEX ix_notifications_employee ON notifications (employee_id, created_at)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    for table in TABLES:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
