"""
Pydantic schemas for stored entities.
Every value persisted in the key-value store passes through these models, which
serialize to the camelCase JSON keys of existing data and resolve legacy field
aliases on read so business code only sees canonical fields.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
)

from sft_tracker.utils.timeutils import format_timestamp, parse_timestamp


def normalize_email(value: Any) -> str:
    """Trim and lowercase an email; the canonical identity key."""
    if value is None:
        return ""
    return str(value).strip().lower()


def _coerce_timestamp(value: Any) -> Any:
    if value is None or isinstance(value, datetime):
        return parse_timestamp(value)
    if isinstance(value, str):
        parsed = parse_timestamp(value)
        if parsed is None:
            raise ValueError(f"Invalid timestamp: {value!r}")
        return parsed
    return value


Timestamp = Annotated[
    datetime,
    BeforeValidator(_coerce_timestamp),
    PlainSerializer(format_timestamp, return_type=str),
]


class TrainingType(str, Enum):
    """Training activity types."""

    RUN = "Run"
    SWIM = "Swim"
    GYM = "Gym"
    METABOLIC_EXERCISE = "Metabolic Exercise"


# Base schemas
class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        validate_assignment=True,
        extra="ignore",
    )

    def to_storage(self) -> dict[str, Any]:
        """JSON-ready dict using the stored key names."""
        return self.model_dump(by_alias=True, mode="json")


# Profile schemas
_PROFILE_TEXT_FIELDS = (
    "rank",
    "full_name",
    "nric",
    "parent_unit",
    "sub_unit",
    "course_code",
    "contact_number",
    "pes_status",
)


class ProfileFields(BaseSchema):
    """Display fields shared by profiles, drafts and updates."""

    rank: str = ""
    full_name: str = Field("", alias="fullName", validation_alias=AliasChoices("fullName", "full_name", "name"))
    nric: str = ""
    parent_unit: str = Field(
        "",
        alias="parentUnit",
        validation_alias=AliasChoices("parentUnit", "parent", "parent_unit", "parentunit"),
    )
    sub_unit: str = Field(
        "",
        alias="subUnit",
        validation_alias=AliasChoices("subUnit", "sub_unit", "subunit", "unit", "unitName"),
    )
    course_code: str = Field("", alias="courseCode", validation_alias=AliasChoices("courseCode", "course_code"))
    contact_number: str = Field(
        "", alias="contactNumber", validation_alias=AliasChoices("contactNumber", "contact_number", "contact")
    )
    pes_status: str = Field("", alias="pesStatus", validation_alias=AliasChoices("pesStatus", "pes_status"))

    @field_validator(*_PROFILE_TEXT_FIELDS, mode="before")
    @classmethod
    def blank_to_empty(cls, v):
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("nric")
    @classmethod
    def mask_nric(cls, v):
        """Only the last four characters are ever kept."""
        return v[-4:]


class UserProfile(ProfileFields):
    """A registered user as stored in the profile directory."""

    email: str
    password_hash: str = Field(
        "", alias="password", validation_alias=AliasChoices("password", "passwordHash", "password_hash")
    )
    is_admin: bool = Field(False, alias="isAdmin", validation_alias=AliasChoices("isAdmin", "is_admin"))

    @field_validator("email", mode="before")
    @classmethod
    def validate_email(cls, v):
        email = normalize_email(v)
        if not email:
            raise ValueError("email is required")
        return email

    @field_validator("password_hash", mode="before")
    @classmethod
    def validate_password_hash(cls, v):
        return "" if v is None else str(v)

    @field_validator("is_admin", mode="before")
    @classmethod
    def validate_is_admin(cls, v):
        return bool(v)


class ProfileDraft(ProfileFields):
    """Registration input; any submitted admin flag is ignored."""

    email: str = ""
    password: str = ""

    @field_validator("email", "password", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else str(v)


class ProfileUpdate(BaseSchema):
    """Partial edit of a user's own profile; unset fields are left unchanged."""

    rank: str | None = None
    full_name: str | None = Field(None, alias="fullName", validation_alias=AliasChoices("fullName", "full_name", "name"))
    nric: str | None = None
    parent_unit: str | None = Field(
        None, alias="parentUnit", validation_alias=AliasChoices("parentUnit", "parent", "parent_unit")
    )
    sub_unit: str | None = Field(
        None, alias="subUnit", validation_alias=AliasChoices("subUnit", "sub_unit", "unit")
    )
    course_code: str | None = Field(None, alias="courseCode", validation_alias=AliasChoices("courseCode", "course_code"))
    contact_number: str | None = Field(
        None, alias="contactNumber", validation_alias=AliasChoices("contactNumber", "contact_number", "contact")
    )
    pes_status: str | None = Field(None, alias="pesStatus", validation_alias=AliasChoices("pesStatus", "pes_status"))
    password: str | None = None

    def changed_fields(self) -> dict[str, str]:
        """Profile fields explicitly set on this update, excluding the password."""
        return {
            name: value
            for name, value in self.model_dump(exclude_unset=True, exclude={"password"}).items()
            if value is not None
        }


# Training schemas
class TrainingRecord(BaseSchema):
    """One training session; `timestamp` is the record identity."""

    owner_email: str | None = Field(
        None, alias="ownerEmail", validation_alias=AliasChoices("ownerEmail", "owner_email")
    )
    training_type: str = Field(
        TrainingType.RUN.value,
        alias="trainingType",
        validation_alias=AliasChoices("trainingType", "training_type", "type"),
    )
    start_time: Timestamp | None = Field(
        None, alias="startTime", validation_alias=AliasChoices("startTime", "start_time")
    )
    end_time: Timestamp | None = Field(None, alias="endTime", validation_alias=AliasChoices("endTime", "end_time"))
    timestamp: Timestamp
    # None when a legacy record never stored the flag
    is_active: bool | None = Field(
        None, alias="isActive", validation_alias=AliasChoices("isActive", "is_active")
    )

    @field_validator("owner_email", mode="before")
    @classmethod
    def validate_owner_email(cls, v):
        email = normalize_email(v)
        return email or None

    @property
    def is_open(self) -> bool:
        return not self.is_closed

    @property
    def is_closed(self) -> bool:
        return self.end_time is not None or self.is_active is False


class TodayRecordRow(TrainingRecord):
    """A training record enriched with its owner's display fields at query time."""

    owner_rank: str = Field("", alias="ownerRank")
    owner_name: str = Field("", alias="ownerName")
    owner_parent_unit: str = Field("", alias="ownerParentUnit")
    owner_sub_unit: str = Field("", alias="ownerSubUnit")
    owner_contact: str = Field("", alias="ownerContact")
    owner_contact_uri: str | None = Field(None, alias="ownerContactUri")


# Health schemas
class HealthDeclaration(BaseSchema):
    """The latest fit health declaration of a user."""

    timestamp: Timestamp | None = None
    answers: list[str | None] = Field(default_factory=list)
    failed_indices: list[int] = Field(
        default_factory=list, alias="failedIndices", validation_alias=AliasChoices("failedIndices", "failed_indices")
    )
    is_fit: bool = Field(True, alias="isFit", validation_alias=AliasChoices("isFit", "is_fit"))

    @property
    def is_complete(self) -> bool:
        return bool(self.answers) and all(answer is not None for answer in self.answers)


class UnfitEvent(BaseSchema):
    """A failed health declaration kept in the user's unfit history."""

    timestamp: Timestamp
    answers: list[str | None] = Field(default_factory=list)
    is_fit: bool = Field(False, alias="isFit")
    email: str | None = None
    failed_indices: list[int] = Field(
        default_factory=list, alias="failedIndices", validation_alias=AliasChoices("failedIndices", "failed_indices")
    )


class UnfitLogEntry(BaseSchema):
    """Summary of an unfit declaration in the global unfit log."""

    timestamp: Timestamp
    email: str = "unknown"
    failed_indices: list[int] = Field(
        default_factory=list, alias="failedIndices", validation_alias=AliasChoices("failedIndices", "failed_indices")
    )
    preview: str = ""


# Audit schemas
class AdminAuditEntry(BaseSchema):
    """One privileged action in the admin audit log."""

    action: str
    admin_email: str = Field(
        "unknown", alias="adminEmail", validation_alias=AliasChoices("adminEmail", "admin_email")
    )
    timestamp: Timestamp
