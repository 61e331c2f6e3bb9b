"""Pydantic schemas for stored records, change events and the HTTP surface.

The same models serve as the storage payloads (serialized to JSON in Redis)
and as the building blocks of the API responses, ensuring one source of
truth for field names and validation.

Schema Hierarchy
=================
::
    Stored records
    ├─ LinkRecord            shortlinks:{code}
    │   ├─ short_code, long_url, created_at
    │   ├─ owner_id (multi-tenant only)
    │   └─ click_count, last_click_event_id
    └─ ClickEvent            analytics:{code}:{seq}
        ├─ short_code, sequence_number
        ├─ occurred_at
        └─ ip_address, user_agent, country

    Notifications
    └─ ChangeEvent
        ├─ link: LinkRecord
        └─ latest_click: ClickEvent | None

    HTTP
    ├─ LinkCreate / LinkUpdate (input)
    ├─ LinkResponse / ClickEventResponse (output)
    └─ HealthResponse (output)

How to Use
===========
**Step 1 — Persist a record**::
    record = LinkRecord(short_code=code, long_url=url, created_at=now)
    await client.set(key, record.model_dump_json())

**Step 2 — Load it back**::
    record = LinkRecord.model_validate_json(raw)

**Step 3 — Push a live update**::
    payload = change_event.to_stream_payload()
    yield f"data: {json.dumps(payload)}\\n\\n"

Key Behaviours
===============
- All datetime fields are timezone-aware (UTC).
- click_count and sequence_number can never be negative.
- Stream payload keys are camelCase to match what browser clients consume.
"""

import datetime
from typing import Any

from pydantic import BaseModel, Field

from linkshortener.enums import HealthStatus

__all__ = [
    "LinkRecord",
    "ClickMetadata",
    "ClickEvent",
    "ChangeEvent",
    "LinkCreate",
    "LinkUpdate",
    "LinkResponse",
    "ClickEventResponse",
    "HealthResponse",
    "click_event_id",
    "utc_now",
]


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def click_event_id(short_code: str, sequence_number: int) -> str:
    return f"{short_code}:{sequence_number}"


class LinkRecord(BaseModel):
    short_code: str
    long_url: str
    created_at: datetime.datetime
    owner_id: str | None = None
    click_count: int = Field(0, ge=0)
    last_click_event_id: str | None = None


class ClickMetadata(BaseModel):
    """Request-derived click details; best effort, never validated."""

    ip_address: str | None = None
    user_agent: str | None = None
    country: str | None = None


class ClickEvent(ClickMetadata):
    short_code: str
    sequence_number: int = Field(..., ge=1)
    occurred_at: datetime.datetime

    @property
    def event_id(self) -> str:
        return click_event_id(self.short_code, self.sequence_number)

    def metadata(self) -> ClickMetadata:
        return ClickMetadata(
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            country=self.country,
        )


class ChangeEvent(BaseModel):
    """State of a watched link after one or more coalesced mutations."""

    link: LinkRecord
    latest_click: ClickEvent | None = None

    @property
    def click_count(self) -> int:
        return self.link.click_count

    def to_stream_payload(self) -> dict[str, Any]:
        latest = None
        if self.latest_click is not None:
            latest = self.latest_click.metadata().model_dump(mode="json")
            latest["occurredAt"] = self.latest_click.occurred_at.isoformat()
        return {"clickCount": self.link.click_count, "latestClickMetadata": latest}


class LinkCreate(BaseModel):
    url: str
    owner_id: str | None = None


class LinkUpdate(BaseModel):
    url: str


class LinkResponse(BaseModel):
    short_code: str
    long_url: str
    short_url: str
    owner_id: str | None
    click_count: int
    created_at: datetime.datetime

    @classmethod
    def from_record(cls, record: LinkRecord, base_url: str) -> "LinkResponse":
        return cls(
            short_code=record.short_code,
            long_url=record.long_url,
            short_url=f"{base_url}/{record.short_code}",
            owner_id=record.owner_id,
            click_count=record.click_count,
            created_at=record.created_at,
        )


class ClickEventResponse(BaseModel):
    sequence_number: int
    occurred_at: datetime.datetime
    ip_address: str | None
    user_agent: str | None
    country: str | None

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: HealthStatus
    cache: HealthStatus
