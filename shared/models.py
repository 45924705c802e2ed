"""Shared data models for the journal sync application."""

import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from shared.exceptions import MalformedEntryError
from shared.payload_codec import (
    DEFAULT_MIME_TYPE,
    decode_inline_payload,
    encode_inline_payload,
    is_inline_reference,
)

DATE_KEY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class SyncState(str, Enum):
    """Synchronization state of a local entry."""
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"


class Category(str, Enum):
    """Closed set of entry categories."""
    WORK = "work"
    STUDY = "study"
    LIFE = "life"


DEFAULT_CATEGORY = Category.LIFE


def parse_category(value: Optional[str]) -> Category:
    """Map a stored category string to a Category, falling back to the default."""
    try:
        return Category(value)
    except ValueError:
        return DEFAULT_CATEGORY


def is_valid_date_key(date_key: str) -> bool:
    """Check that ``date_key`` is a real calendar date in YYYY-MM-DD form."""
    if not isinstance(date_key, str) or not DATE_KEY_PATTERN.match(date_key):
        return False
    try:
        datetime.strptime(date_key, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def now_millis() -> int:
    """Current time as epoch milliseconds."""
    return int(datetime.now().timestamp() * 1000)


def format_display_time(created_at: int) -> str:
    """Render an epoch-millisecond timestamp as an ``HH:MM`` label."""
    return datetime.fromtimestamp(created_at / 1000).strftime("%H:%M")


@dataclass(frozen=True)
class InlinePayload:
    """Attachment bytes carried locally, not yet uploaded."""
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class RemotePayload:
    """Attachment stored in the remote object store."""
    reference: str
    remote_id: str


Payload = Union[InlinePayload, RemotePayload]


@dataclass
class Attachment:
    """A file or image bound to one entry."""
    id: str
    original_name: str
    mime_type: str
    payload: Payload

    @property
    def is_uploaded(self) -> bool:
        return isinstance(self.payload, RemotePayload)

    @property
    def remote_id(self) -> Optional[str]:
        if isinstance(self.payload, RemotePayload) and self.payload.remote_id:
            return self.payload.remote_id
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.original_name,
            "type": self.mime_type,
        }
        if isinstance(self.payload, InlinePayload):
            data["url"] = encode_inline_payload(self.payload.data, self.payload.mime_type)
        else:
            data["url"] = self.payload.reference
            if self.payload.remote_id:
                data["driveId"] = self.payload.remote_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attachment":
        """
        Build an Attachment from its document form.

        A ``data:`` url is an inline payload; any other url is a remote reference.

        Raises:
            MalformedEntryError: If the document is missing its id or carries
                an undecodable inline payload
        """
        if not isinstance(data, dict) or not data.get("id"):
            raise MalformedEntryError("Attachment document has no id")

        url = data.get("url") or ""
        mime_type = data.get("type") or DEFAULT_MIME_TYPE

        if is_inline_reference(url):
            try:
                raw, inline_mime = decode_inline_payload(url)
            except ValueError as e:
                raise MalformedEntryError(f"Attachment {data['id']} has a bad inline payload: {e}") from e
            payload: Payload = InlinePayload(data=raw, mime_type=inline_mime)
        else:
            payload = RemotePayload(reference=url, remote_id=data.get("driveId") or "")

        return cls(
            id=str(data["id"]),
            original_name=data.get("name") or "",
            mime_type=mime_type,
            payload=payload,
        )


@dataclass
class Entry:
    """One journal item."""
    id: str
    date_key: str
    created_at: int
    text: str = ""
    display_time: str = ""
    category: Category = DEFAULT_CATEGORY
    attachments: List[Attachment] = field(default_factory=list)
    sync_state: SyncState = SyncState.PENDING

    @classmethod
    def create(
        cls,
        date_key: str,
        text: str = "",
        category: Category = DEFAULT_CATEGORY,
        attachments: Optional[List[Attachment]] = None,
        created_at: Optional[int] = None,
    ) -> "Entry":
        """Create a new pending entry with a fresh id and timestamp."""
        created_at = created_at if created_at is not None else now_millis()
        return cls(
            id=uuid.uuid4().hex,
            date_key=date_key,
            created_at=created_at,
            text=text,
            display_time=format_display_time(created_at),
            category=category,
            attachments=list(attachments or []),
            sync_state=SyncState.PENDING,
        )

    def validate(self) -> None:
        """
        Check the entry is well-formed.

        Raises:
            ValueError: On an empty id, a bad date key, or an entry with
                neither text nor attachments
        """
        if not self.id:
            raise ValueError("Entry id must not be empty")
        if not is_valid_date_key(self.date_key):
            raise ValueError(f"Invalid date key: {self.date_key!r}")
        if not self.text.strip() and not self.attachments:
            raise ValueError("Entry needs text or at least one attachment")

    def with_sync_state(self, sync_state: SyncState) -> "Entry":
        return replace(self, sync_state=sync_state)

    @property
    def has_inline_attachments(self) -> bool:
        return any(isinstance(att.payload, InlinePayload) for att in self.attachments)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date_key,
            "timestamp": self.created_at,
            "timeLabel": self.display_time,
            "content": self.text,
            "category": self.category.value,
            "attachments": [att.to_dict() for att in self.attachments],
            "syncStatus": self.sync_state.value,
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        default_sync_state: SyncState = SyncState.PENDING
    ) -> "Entry":
        """
        Build an Entry from its JSON document form.

        Args:
            data: Parsed document
            default_sync_state: State used when the document has no ``syncStatus``

        Raises:
            MalformedEntryError: If required fields are missing or invalid
        """
        if not isinstance(data, dict):
            raise MalformedEntryError("Entry document is not an object")

        entry_id = data.get("id")
        date_key = data.get("date")
        if not entry_id:
            raise MalformedEntryError("Entry document has no id")
        if not is_valid_date_key(date_key):
            raise MalformedEntryError(f"Entry {entry_id} has an invalid date: {date_key!r}")

        try:
            created_at = int(data.get("timestamp") or 0)
        except (TypeError, ValueError) as e:
            raise MalformedEntryError(f"Entry {entry_id} has an invalid timestamp") from e

        raw_attachments = data.get("attachments") or []
        if not isinstance(raw_attachments, list):
            raise MalformedEntryError(f"Entry {entry_id} attachments is not a list")

        try:
            sync_state = SyncState(data["syncStatus"]) if data.get("syncStatus") else default_sync_state
        except ValueError as e:
            raise MalformedEntryError(f"Entry {entry_id} has an unknown sync status") from e

        return cls(
            id=str(entry_id),
            date_key=date_key,
            created_at=created_at,
            text=data.get("content") or "",
            display_time=data.get("timeLabel") or "",
            category=parse_category(data.get("category")),
            attachments=[Attachment.from_dict(att) for att in raw_attachments],
            sync_state=sync_state,
        )


@dataclass
class Report:
    """Cached AI summary for a date range."""
    id: str
    start_date: str
    end_date: str
    created_at: int
    summary: str
    key_achievements: List[str] = field(default_factory=list)
    suggestions: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "timestamp": self.created_at,
            "data": {
                "summary": self.summary,
                "keyAchievements": list(self.key_achievements),
                "suggestions": self.suggestions,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Report":
        body = data.get("data") or {}
        return cls(
            id=data["id"],
            start_date=data["startDate"],
            end_date=data["endDate"],
            created_at=int(data.get("timestamp") or 0),
            summary=body.get("summary", ""),
            key_achievements=list(body.get("keyAchievements") or []),
            suggestions=body.get("suggestions", ""),
        )


@dataclass
class MergeResult:
    """Outcome of merging a batch of remote entries into the local store."""
    adopted: int = 0
    skipped: int = 0


@dataclass
class SyncSummary:
    """Aggregate result of one sync pass."""
    owner: str
    date_key: str
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    tombstones_cleared: int = 0
    tombstones_pending: int = 0
    pulled: int = 0
    adopted: int = 0
    pushed: int = 0
    failed: int = 0
    pull_error: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def has_failures(self) -> bool:
        return bool(self.failed or self.tombstones_pending or self.pull_error)

    @property
    def status(self) -> str:
        return "completed_with_errors" if self.has_failures else "completed"

    @property
    def message(self) -> str:
        if not self.has_failures:
            return f"Synced {self.pushed} entries, pulled {self.pulled}"
        parts = []
        if self.failed:
            parts.append(f"{self.failed} entries failed to sync")
        if self.tombstones_pending:
            parts.append(f"{self.tombstones_pending} deletions still pending")
        if self.pull_error:
            parts.append("pull failed")
        message = ", ".join(parts)
        if self.last_error:
            message += f": {self.last_error}"
        return message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "date": self.date_key,
            "status": self.status,
            "message": self.message,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "tombstones_cleared": self.tombstones_cleared,
            "tombstones_pending": self.tombstones_pending,
            "pulled": self.pulled,
            "adopted": self.adopted,
            "pushed": self.pushed,
            "failed": self.failed,
            "pull_error": self.pull_error,
            "last_error": self.last_error,
        }
