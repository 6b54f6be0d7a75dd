"""Notification delivery models.

Value objects are pydantic models (validated at the boundary where the
business layer hands events in). The DeliveryAttempt store record is a
dataclass mutated only through its store.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    TypeAdapter,
    field_validator,
)
from typing_extensions import TypeAliasType

from infrastructure.operations import OperationResult, OperationStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Priority(IntEnum):
    """Notification priority. Ordered so that ``priority >= minimum`` works."""

    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return self.name.title()

    @classmethod
    def parse(cls, value: Union["Priority", int, str]) -> "Priority":
        """Accept enum members, ints (1-4) or names in any case."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown priority: {value}") from None


class Channel(str, Enum):
    """Delivery transports."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    IN_APP = "in_app"
    SLACK = "slack"
    TEAMS = "teams"
    WEBHOOK = "webhook"

    @property
    def uses_target(self) -> bool:
        """True for channels addressed through a configured ChannelTarget."""
        return self in TARGET_CHANNELS


# Resolver output order for user-addressed channels
RECIPIENT_CHANNELS: Tuple[Channel, ...] = (
    Channel.IN_APP,
    Channel.EMAIL,
    Channel.PUSH,
    Channel.SMS,
)
TARGET_CHANNELS: FrozenSet[Channel] = frozenset(
    {Channel.SLACK, Channel.TEAMS, Channel.WEBHOOK}
)


# Template variables are a closed union instead of arbitrary objects
TemplateValue = TypeAliasType(
    "TemplateValue",
    Union[StrictBool, StrictInt, StrictFloat, StrictStr, Dict[str, "TemplateValue"]],
)
TemplateVariables = Dict[str, TemplateValue]

template_variables_adapter: TypeAdapter[Dict[str, Any]] = TypeAdapter(TemplateVariables)


def coerce_variables(raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Validate a raw mapping as TemplateVariables.

    Raises:
        pydantic.ValidationError: If a value is not str/int/float/bool or a
            nested mapping of those.
    """
    return template_variables_adapter.validate_python(raw or {})


class NotificationEvent(BaseModel):
    """Immutable logical event produced by the business layer."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    type: str
    priority: Priority = Priority.NORMAL
    title: str
    message: str
    recipient_id: str
    sender_id: Optional[str] = None
    related_entity_id: Optional[str] = None
    related_entity_type: Optional[str] = None
    category: Optional[str] = None
    action_url: Optional[str] = None
    metadata: TemplateVariables = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("priority", mode="before")
    @classmethod
    def parse_priority(cls, v: Any) -> Priority:
        return Priority.parse(v)

    @field_validator("type", "recipient_id")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    def template_variables(self) -> Dict[str, Any]:
        """Variables available to every template for this event.

        Metadata keys are exposed both under ``metadata.*`` and at the top
        level, without overriding the event's own fields.
        """
        variables: Dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.label,
            "category": self.category or "",
            "recipient_id": self.recipient_id,
            "sender_id": self.sender_id or "",
            "related_entity_id": self.related_entity_id or "",
            "related_entity_type": self.related_entity_type or "",
            "action_url": self.action_url or "",
            "created_at": self.created_at.isoformat(),
            "metadata": dict(self.metadata),
        }
        for key, value in self.metadata.items():
            variables.setdefault(key, value)
        return variables


class ChannelPreference(BaseModel):
    """Per (user, notification type) channel toggles and quiet hours.

    Field defaults are the system defaults applied when no row is stored.
    """

    user_id: str
    notification_type: str
    email_enabled: bool = True
    sms_enabled: bool = True
    push_enabled: bool = True
    in_app_enabled: bool = True
    quiet_hours_start: Optional[str] = None
    quiet_hours_end: Optional[str] = None
    time_zone: str = "UTC"
    minimum_priority: Priority = Priority.NORMAL

    @field_validator("minimum_priority", mode="before")
    @classmethod
    def parse_priority(cls, v: Any) -> Priority:
        return Priority.parse(v)

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def validate_hhmm(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        parts = v.split(":")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError(f"Quiet hours must be HH:MM: {v}")
        hours, minutes = int(parts[0]), int(parts[1])
        if not (0 <= hours < 24 and 0 <= minutes < 60):
            raise ValueError(f"Quiet hours out of range: {v}")
        return f"{hours:02d}:{minutes:02d}"

    def is_enabled(self, channel: Channel) -> bool:
        return {
            Channel.EMAIL: self.email_enabled,
            Channel.SMS: self.sms_enabled,
            Channel.PUSH: self.push_enabled,
            Channel.IN_APP: self.in_app_enabled,
        }.get(channel, False)


class Recipient(BaseModel):
    """Contact details of a user, resolved from the recipient directory."""

    user_id: str
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = None
    push_tokens: List[str] = Field(default_factory=list)
    display_name: Optional[str] = None

    @field_validator("phone_number")
    @classmethod
    def validate_phone_number(cls, v: Optional[str]) -> Optional[str]:
        """Validate E.164 phone format if provided."""
        if v is None:
            return v
        v = v.strip()
        if not v.startswith("+") or not v[1:].isdigit():
            raise ValueError(f"Phone number must be in E.164 format: {v}")
        if len(v) < 8 or len(v) > 16:
            raise ValueError(f"Phone number length invalid: {v}")
        return v

    @property
    def ref(self) -> str:
        return f"user:{self.user_id}"


class ChannelTarget(BaseModel):
    """A configured Slack, Teams or webhook endpoint."""

    id: str
    owner_id: str
    channel: Channel
    webhook_url: str
    secret_key: Optional[str] = Field(default=None, repr=False)
    enabled_notification_types: FrozenSet[str] = frozenset()
    timeout_seconds: int = Field(default=30, ge=5, le=300)
    max_retries: int = Field(default=3, ge=0, le=10)
    is_active: bool = True
    name: Optional[str] = None

    @field_validator("channel")
    @classmethod
    def validate_channel(cls, v: Channel) -> Channel:
        if v not in TARGET_CHANNELS:
            raise ValueError(f"{v.value} is not a target channel")
        return v

    @field_validator("webhook_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("https://", "http://")):
            raise ValueError("webhook_url must be an http(s) URL")
        return v

    def subscribes_to(self, notification_type: str) -> bool:
        """An empty type set subscribes to every notification type."""
        return (
            not self.enabled_notification_types
            or notification_type in self.enabled_notification_types
        )

    @property
    def ref(self) -> str:
        return f"{self.channel.value}:{self.id}"


DeliveryTarget = Union[Recipient, ChannelTarget]


class DeliveryStatus(Enum):
    """Lifecycle of a DeliveryAttempt (plus SUPPRESSED for history)."""

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"
    SUPPRESSED = "suppressed"
    RESOLVED = "resolved"


class DeliveryOutcome(BaseModel):
    """Normalized result of one dispatcher call."""

    success: bool
    provider_message_id: Optional[str] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    is_retryable: bool = False
    retry_after: Optional[int] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def sent(
        cls,
        provider_message_id: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> "DeliveryOutcome":
        return cls(
            success=True,
            provider_message_id=provider_message_id,
            status_code=status_code,
            details=details or {},
        )

    @classmethod
    def failed(
        cls,
        error_message: str,
        error_code: str,
        is_retryable: bool,
        status_code: Optional[int] = None,
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> "DeliveryOutcome":
        return cls(
            success=False,
            error_message=error_message,
            error_code=error_code,
            is_retryable=is_retryable,
            status_code=status_code,
            retry_after=retry_after,
            details=details or {},
        )

    @classmethod
    def from_result(cls, result: OperationResult) -> "DeliveryOutcome":
        """Map an integration OperationResult onto an outcome."""
        data = result.data if isinstance(result.data, dict) else {}
        status_code = data.get("status_code")
        details = {
            k: v for k, v in data.items() if k not in ("status_code", "id", "body")
        }
        if result.is_success:
            return cls.sent(
                provider_message_id=data.get("id"),
                status_code=status_code,
                details=details,
            )
        return cls.failed(
            error_message=result.message,
            error_code=result.error_code or result.status.value.upper(),
            is_retryable=result.status == OperationStatus.TRANSIENT_ERROR,
            status_code=status_code,
            retry_after=result.retry_after,
            details=details,
        )

    @classmethod
    def configuration_error(cls, message: str) -> "DeliveryOutcome":
        return cls.failed(message, "CONFIGURATION_ERROR", is_retryable=False)

    @classmethod
    def render_error(cls, message: str) -> "DeliveryOutcome":
        return cls.failed(message, "RENDER_ERROR", is_retryable=False)

    @classmethod
    def rate_limited(cls, retry_after: int) -> "DeliveryOutcome":
        return cls.failed(
            "Provider rate limit reached",
            "RATE_LIMITED",
            is_retryable=True,
            retry_after=retry_after,
        )


class RenderedMessage(BaseModel):
    """Channel-shaped content produced by the template renderer."""

    channel: Channel
    subject: Optional[str] = None
    text: str = ""
    html: Optional[str] = None
    segments: List[str] = Field(default_factory=list)
    payload: Dict[str, Any] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)


@dataclass
class DeliveryAttempt:
    """One tracked try to deliver one event over one channel/target.

    ``target`` is a snapshot used to address retries: recipient channels
    keep the contact details, target channels keep only the target id
    (secrets are re-read from the target store).
    """

    event_id: str
    event_type: str
    channel: Channel
    target_ref: str
    target: Dict[str, Any]
    payload: Dict[str, Any]
    max_retries: int
    id: str = field(default_factory=new_id)
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempt_number: int = 0
    scheduled_at: datetime = field(default_factory=utc_now)
    sent_at: Optional[datetime] = None
    response_code: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    provider_message_id: Optional[str] = None
    claim_worker: Optional[str] = None
    claim_expires_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if not self.event_id:
            raise ValueError("event_id is required")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")


class ChannelDelivery(BaseModel):
    """Per (channel, target) line of a delivery summary."""

    event_id: str
    channel: Optional[Channel] = None
    target_ref: str = ""
    status: DeliveryStatus
    attempt_id: Optional[str] = None
    outcome: DeliveryOutcome

    @property
    def success(self) -> bool:
        return self.outcome.success


class DeliverySummary(BaseModel):
    """Aggregate of every per-channel outcome of one or more events."""

    event_ids: List[str] = Field(default_factory=list)
    deliveries: List[ChannelDelivery] = Field(default_factory=list)
    suppressed_count: int = 0
    deduplicated: bool = False

    @property
    def total(self) -> int:
        return len(self.deliveries)

    @property
    def success_count(self) -> int:
        return sum(1 for d in self.deliveries if d.success)

    @property
    def failure_count(self) -> int:
        return self.total - self.success_count

    def by_channel(self) -> Dict[str, Dict[str, int]]:
        counts: Dict[str, Dict[str, int]] = {}
        for delivery in self.deliveries:
            key = delivery.channel.value if delivery.channel else "unknown"
            bucket = counts.setdefault(key, {"succeeded": 0, "failed": 0})
            bucket["succeeded" if delivery.success else "failed"] += 1
        return counts

    @classmethod
    def combine(cls, summaries: List["DeliverySummary"]) -> "DeliverySummary":
        combined = cls()
        for summary in summaries:
            combined.event_ids.extend(summary.event_ids)
            combined.deliveries.extend(summary.deliveries)
            combined.suppressed_count += summary.suppressed_count
        return combined


class HistoryEntry(BaseModel):
    """Append-only audit record of an attempt outcome or a decision."""

    id: str = Field(default_factory=new_id)
    event_id: str
    status: DeliveryStatus
    attempt_id: Optional[str] = None
    channel: Optional[Channel] = None
    target_ref: Optional[str] = None
    attempt_number: int = 0
    response_code: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    recorded_at: datetime = Field(default_factory=utc_now)
    metadata: Dict[str, Any] = Field(default_factory=dict)
