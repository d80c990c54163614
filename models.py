from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional, Union

from bson.timestamp import Timestamp
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

USERS = "users"
INCIDENTS = "incidents"
SERVICE_PROVIDERS = "service_providers"
ACCOUNTS = "accounts"
REVOKED_TOKENS = "revoked_tokens"


def utcnow() -> datetime:
    """Current UTC time at the store's millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def normalize_timestamp(value):
    """Convert whatever the store hands back into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, Timestamp):
        return value.as_datetime().astimezone(timezone.utc)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        return normalize_timestamp(datetime.fromisoformat(value.replace("Z", "+00:00")))
    raise TypeError(f"Unsupported timestamp value: {value!r}")


def later_than(previous: Optional[datetime], now: datetime) -> datetime:
    # Two writes inside the same millisecond must still move updated_at forward.
    if previous is not None and now <= previous:
        return previous + timedelta(milliseconds=1)
    return now


class UserRole(str, Enum):
    CLIENT = "client"
    SERVICE_PROVIDER = "service_provider"
    ADMIN = "admin"


class IssueType(str, Enum):
    TOWING = "towing"
    BREAKDOWN = "breakdown"
    FLAT_TIRE = "flat_tire"
    OTHER = "other"


class IncidentStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AvailabilityStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class StoredModel(BaseModel):
    """Entity read back from the document store; timestamps are normalized on the way in."""

    @field_validator("created_at", "updated_at", mode="before", check_fields=False)
    @classmethod
    def _normalize_timestamps(cls, value):
        return normalize_timestamp(value)


class User(StoredModel):
    id: str
    email: EmailStr
    display_name: str
    role: UserRole = UserRole.CLIENT
    phone_number: Optional[str] = None
    created_at: datetime


class Location(BaseModel):
    latitude: Optional[float] = Field(default=0.0, ge=-90, le=90)
    longitude: Optional[float] = Field(default=0.0, ge=-180, le=180)
    address: str = ""


class Incident(StoredModel):
    id: str
    user_id: str
    location: Location
    vehicle_type: str
    issue_type: IssueType
    status: IncidentStatus
    assigned_provider_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ServiceProvider(StoredModel):
    id: str
    user_id: str
    company_name: str
    service_area: List[str] = []
    vehicle_types: List[str] = []
    contact_number: str
    availability_status: AvailabilityStatus = AvailabilityStatus.OFFLINE
    rating: Optional[float] = None
    created_at: datetime


class IncidentDraft(BaseModel):
    location: Location
    vehicle_type: str
    issue_type: IssueType = IssueType.OTHER


class IncidentPatch(BaseModel):
    # Unknown keys (user_id, created_at, ...) are dropped, never applied.
    model_config = ConfigDict(extra="ignore")

    status: Optional[IncidentStatus] = None
    location: Optional[Location] = None
    vehicle_type: Optional[str] = None
    issue_type: Optional[IssueType] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude_none=True, mode="json")


class Principal(BaseModel):
    id: str
    email: EmailStr
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    phone_number: Optional[str] = None
    email_verified: bool = False


# Registration outcomes

@dataclass(frozen=True)
class Completed:
    principal: Principal
    access_token: str
    kind: str = "completed"


@dataclass(frozen=True)
class PendingVerification:
    email: str
    kind: str = "pending_verification"


RegisterOutcome = Union[Completed, PendingVerification]


# Request bodies

class UserCreate(BaseModel):
    email: EmailStr
    password: str


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class EmailVerification(BaseModel):
    token: str


class GoogleLogin(BaseModel):
    code: str
    redirect_uri: str
