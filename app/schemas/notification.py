from __future__ import annotations

from pydantic import BaseModel, Field


class NotificationItem(BaseModel):
    level: str
    title: str
    message: str


class NotificationCheckResponse(BaseModel):
    items: list[NotificationItem]
    delivered: list[str]


class AccountingNotificationRequest(BaseModel):
    recipients: list[str] = Field(default_factory=list, description="Defaults to the configured accounting recipients")


class AccountingNotificationResponse(BaseModel):
    log_id: str
    invoice_number: str
    recipients: list[str]
    delivered: list[str]
