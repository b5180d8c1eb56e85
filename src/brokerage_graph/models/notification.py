"""Notification model handed to the notification collaborator."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ..utils import new_id, utc_now


class NotificationType(str, Enum):
    NEW_PROPERTY_MATCH = 'new-property-match'
    CROSS_AGENT_OFFER = 'cross-agent-offer'
    OFFER_REJECTED = 'offer-rejected'
    DEAL_CREATED = 'deal-created'


class NotificationPriority(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class Notification(BaseModel):
    model_config = {'use_enum_values': True}

    id: str = Field(default_factory=lambda: new_id('notif'))
    user_id: str
    type: NotificationType
    priority: NotificationPriority = NotificationPriority.MEDIUM
    title: str
    message: str
    entity_type: str
    entity_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    dedupe_key: str | None = Field(
        default=None,
        description='Idempotency key: a dispatcher delivers each key at most once',
    )
    created_at: datetime = Field(default_factory=utc_now)
