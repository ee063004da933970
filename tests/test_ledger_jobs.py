"""Command-line parsing for the scheduled ledger jobs."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest

from scripts.ledger_jobs import build_parser


def test_day_close_defaults_to_all_companies_and_yesterday():
    args = build_parser().parse_args(["day-close"])
    assert args.command == "day-close"
    assert args.company is None
    assert args.date is None


def test_day_close_with_company_and_date():
    company = uuid.uuid4()
    args = build_parser().parse_args(["day-close", "--company", str(company), "--date", "2026-03-02"])
    assert args.company == company
    assert args.date == date(2026, 3, 2)


def test_accrue_parses_decimal_days():
    company, leave_type = uuid.uuid4(), uuid.uuid4()
    args = build_parser().parse_args([
        "accrue", "--company", str(company), "--leave-type", str(leave_type),
        "--days", "1.5", "--reason", "March accrual",
    ])
    assert args.days == Decimal("1.5")
    assert args.leave_type == leave_type


def test_accrue_rejects_non_numeric_days():
    with pytest.raises(SystemExit):
        build_parser().parse_args([
            "accrue", "--company", str(uuid.uuid4()), "--leave-type", str(uuid.uuid4()),
            "--days", "lots", "--reason", "Bad input",
        ])
