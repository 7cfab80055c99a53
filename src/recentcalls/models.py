"""Canonical contact and call-log shapes."""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

VOICE_CALL_TYPE = "Voice"


class PhoneKind(enum.StrEnum):
    """Kind of phone identity a contact carries."""

    DIRECT_PHONE = "direct_phone"
    EXTENSION = "extension"
    OTHER = "other"


class PhoneIdentity(BaseModel):
    """One phone identity of a contact."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: PhoneKind
    value: str = Field(min_length=1)

    @field_validator("value")
    @classmethod
    def _normalize_value(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("value must be a non-empty string")
        return normalized

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PhoneIdentity:
        """Build an identity from a platform contact ``phoneNumbers`` entry.

        Entries look like ``{"type": "directPhone", "phoneNumber": "+1..."}``
        or ``{"phoneType": "extension", "phoneNumber": "101"}``. Anything else
        is kept as :attr:`PhoneKind.OTHER`.
        """
        if payload.get("type") == "directPhone":
            kind = PhoneKind.DIRECT_PHONE
        elif payload.get("phoneType") == "extension":
            kind = PhoneKind.EXTENSION
        else:
            kind = PhoneKind.OTHER
        return cls(kind=kind, value=str(payload.get("phoneNumber") or ""))

    @property
    def usable(self) -> bool:
        return self.kind in (PhoneKind.DIRECT_PHONE, PhoneKind.EXTENSION)


class Contact(BaseModel):
    """A contact whose recent calls are resolved."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1)
    name: str | None = None
    phone_identities: tuple[PhoneIdentity, ...] = ()

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Contact:
        """Build a contact from a platform contact payload."""
        raw_numbers = payload.get("phoneNumbers")
        identities: list[PhoneIdentity] = []
        if isinstance(raw_numbers, list):
            for item in raw_numbers:
                if isinstance(item, dict) and item.get("phoneNumber"):
                    identities.append(PhoneIdentity.from_payload(item))
        return cls(
            id=str(payload.get("id") or ""),
            name=payload.get("name"),
            phone_identities=tuple(identities),
        )

    @property
    def usable_identities(self) -> tuple[PhoneIdentity, ...]:
        return tuple(identity for identity in self.phone_identities if identity.usable)


class CallEndpoint(BaseModel):
    """One party of a call."""

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    phone_number: str | None = Field(default=None, alias="phoneNumber")
    extension_number: str | None = Field(default=None, alias="extensionNumber")
    name: str | None = None


class CallRecord(BaseModel):
    """One call-log record, local or remote."""

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    from_: CallEndpoint | None = Field(default=None, alias="from")
    to: CallEndpoint | None = None
    start_time: datetime = Field(alias="startTime")
    direction: str | None = None
    type: str = VOICE_CALL_TYPE
    result: str | None = None
    duration: int | None = None

    @field_validator("start_time")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def has_endpoints(self) -> bool:
        return self.from_ is not None and self.to is not None


class CallLogPage(BaseModel):
    """One page returned by a remote call-log query."""

    model_config = ConfigDict(extra="ignore")

    records: list[CallRecord] = Field(default_factory=list)
    paging: dict[str, Any] | None = None
    navigation: dict[str, Any] | None = None
