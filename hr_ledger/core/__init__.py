"""Core module — Company and Employee models, schemas and services."""

from hr_ledger.core.models import Company, Employee

__all__ = ["Company", "Employee"]
