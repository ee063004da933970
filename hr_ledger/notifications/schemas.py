"""Notification Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from hr_ledger.common.constants import NotificationType
from hr_ledger.common.pagination import PaginationMeta


class NotificationOut(BaseModel):
    """Full outbox row."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    type: NotificationType
    title: str
    message: str
    entity_type: Optional[str] = None
    entity_id: Optional[uuid.UUID] = None
    is_dispatched: bool = False
    dispatched_at: Optional[datetime] = None
    created_at: datetime


class LedgerEvent(BaseModel):
    """Logical event handed to the dispatcher."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    type: NotificationType
    reference_id: Optional[uuid.UUID] = Field(
        default=None, validation_alias=AliasChoices("entity_id", "reference_id"),
    )
    timestamp: datetime = Field(validation_alias=AliasChoices("created_at", "timestamp"))
    title: str
    message: str


class NotificationListResponse(BaseModel):
    data: list[NotificationOut]
    meta: PaginationMeta
