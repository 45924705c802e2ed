"""Unit tests for shared data models."""

import json

import pytest

from shared.exceptions import MalformedEntryError
from shared.models import (
    Attachment,
    Category,
    Entry,
    InlinePayload,
    RemotePayload,
    Report,
    SyncState,
    SyncSummary,
    is_valid_date_key,
)
from shared.payload_codec import encode_inline_payload


class TestAttachment:
    """Tests for Attachment dataclass."""

    def test_inline_attachment_from_data_url(self):
        """Test that a data URL becomes an inline payload."""
        attachment = Attachment.from_dict({
            "id": "att1",
            "name": "photo.png",
            "type": "image/png",
            "url": encode_inline_payload(b"\x89PNG", "image/png"),
        })

        assert attachment.payload == InlinePayload(data=b"\x89PNG", mime_type="image/png")
        assert attachment.is_uploaded is False
        assert attachment.remote_id is None

    def test_remote_attachment_from_stored_document(self):
        """Test that an uploaded attachment keeps its reference and remote id."""
        attachment = Attachment.from_dict({
            "id": "att2",
            "name": "doc.pdf",
            "type": "application/pdf",
            "url": "https://bucket.s3.us-east-1.amazonaws.com/k/doc.pdf",
            "driveId": "k/doc.pdf",
        })

        assert attachment.is_uploaded is True
        assert attachment.remote_id == "k/doc.pdf"
        assert attachment.payload.reference.endswith("doc.pdf")

    def test_remote_attachment_without_remote_id(self):
        """Test a legacy link with no driveId: remote, but no remote id."""
        attachment = Attachment.from_dict({
            "id": "att3", "name": "x", "type": "image/jpeg", "url": "https://example.com/x.jpg"
        })

        assert attachment.is_uploaded is True
        assert attachment.remote_id is None
        assert "driveId" not in attachment.to_dict()

    def test_to_dict_writes_data_url_for_inline(self):
        """Test serializing an inline attachment."""
        attachment = Attachment(
            id="att4",
            original_name="a.txt",
            mime_type="text/plain",
            payload=InlinePayload(data=b"hello", mime_type="text/plain"),
        )

        data = attachment.to_dict()

        assert data == {
            "id": "att4",
            "name": "a.txt",
            "type": "text/plain",
            "url": "data:text/plain;base64,aGVsbG8=",
        }

    def test_to_dict_writes_drive_id_for_remote(self):
        attachment = Attachment(
            id="att5",
            original_name="a.jpg",
            mime_type="image/jpeg",
            payload=RemotePayload(reference="https://r/a.jpg", remote_id="key/a.jpg"),
        )

        assert attachment.to_dict()["driveId"] == "key/a.jpg"
        assert attachment.to_dict()["url"] == "https://r/a.jpg"

    def test_missing_id_is_malformed(self):
        with pytest.raises(MalformedEntryError):
            Attachment.from_dict({"name": "x", "url": "https://r/x"})

    def test_bad_inline_payload_is_malformed(self):
        with pytest.raises(MalformedEntryError):
            Attachment.from_dict({"id": "a", "url": "data:image/png;base64,@@@"})


class TestEntry:
    """Tests for Entry dataclass."""

    def test_create_sets_pending_and_display_time(self):
        entry = Entry.create(date_key="2024-05-01", text="lunch", created_at=1714550400000)

        assert entry.sync_state == SyncState.PENDING
        assert entry.category == Category.LIFE
        assert entry.id
        assert len(entry.display_time) == 5
        assert entry.display_time[2] == ":"

    def test_create_generates_unique_ids(self):
        first = Entry.create(date_key="2024-05-01", text="a")
        second = Entry.create(date_key="2024-05-01", text="b")

        assert first.id != second.id

    def test_document_keys_match_stored_format(self):
        entry = Entry(
            id="a1",
            date_key="2024-05-01",
            created_at=1714550400000,
            text="lunch",
            display_time="12:00",
            category=Category.WORK,
            sync_state=SyncState.SYNCED,
        )

        assert entry.to_dict() == {
            "id": "a1",
            "date": "2024-05-01",
            "timestamp": 1714550400000,
            "timeLabel": "12:00",
            "content": "lunch",
            "category": "work",
            "attachments": [],
            "syncStatus": "synced",
        }

    def test_json_round_trip_preserves_entry(self):
        entry = Entry(
            id="a1",
            date_key="2024-05-01",
            created_at=1,
            text="lunch",
            attachments=[
                Attachment(
                    id="att",
                    original_name="p.png",
                    mime_type="image/png",
                    payload=InlinePayload(data=b"\x00\x01", mime_type="image/png"),
                )
            ],
        )

        restored = Entry.from_dict(json.loads(json.dumps(entry.to_dict())))

        assert restored == entry

    def test_missing_category_defaults_to_life(self):
        entry = Entry.from_dict({"id": "a", "date": "2024-05-01", "timestamp": 1, "content": "x"})

        assert entry.category == Category.LIFE

    def test_unknown_category_defaults_to_life(self):
        entry = Entry.from_dict({
            "id": "a", "date": "2024-05-01", "timestamp": 1, "content": "x", "category": "travel"
        })

        assert entry.category == Category.LIFE

    def test_missing_sync_status_uses_default(self):
        data = {"id": "a", "date": "2024-05-01", "timestamp": 1, "content": "x"}

        assert Entry.from_dict(data).sync_state == SyncState.PENDING
        assert Entry.from_dict(data, default_sync_state=SyncState.SYNCED).sync_state == SyncState.SYNCED

    @pytest.mark.parametrize("data", [
        {"date": "2024-05-01"},
        {"id": "a", "date": "2024-13-01"},
        {"id": "a", "date": "May 1"},
        {"id": "a", "date": "2024-05-01", "timestamp": "soon"},
        {"id": "a", "date": "2024-05-01", "attachments": "none"},
        {"id": "a", "date": "2024-05-01", "syncStatus": "lost"},
        ["not", "an", "object"],
    ])
    def test_malformed_documents(self, data):
        with pytest.raises(MalformedEntryError):
            Entry.from_dict(data)

    @pytest.mark.parametrize("data, cause", [
        ({"id": "a", "date": "2024-05-01", "timestamp": "soon"}, ValueError),
        ({"id": "a", "date": "2024-05-01", "syncStatus": "lost"}, ValueError),
        ({"id": "a", "date": "2024-05-01",
          "attachments": [{"id": "x", "url": "data:image/png;base64,@@@"}]}, ValueError),
    ])
    def test_malformed_document_keeps_cause(self, data, cause):
        with pytest.raises(MalformedEntryError) as exc_info:
            Entry.from_dict(data)

        assert isinstance(exc_info.value.__cause__, cause)

    def test_validate_rejects_empty_entry(self):
        entry = Entry(id="a", date_key="2024-05-01", created_at=1, text="   ")

        with pytest.raises(ValueError):
            entry.validate()

    def test_validate_accepts_attachment_only_entry(self):
        entry = Entry(
            id="a",
            date_key="2024-05-01",
            created_at=1,
            attachments=[
                Attachment(
                    id="att",
                    original_name="p.png",
                    mime_type="image/png",
                    payload=InlinePayload(data=b"x", mime_type="image/png"),
                )
            ],
        )

        entry.validate()

    def test_validate_rejects_bad_date(self):
        entry = Entry(id="a", date_key="2024/05/01", created_at=1, text="x")

        with pytest.raises(ValueError):
            entry.validate()

    def test_with_sync_state_returns_copy(self):
        entry = Entry(id="a", date_key="2024-05-01", created_at=1, text="x")

        synced = entry.with_sync_state(SyncState.SYNCED)

        assert synced.sync_state == SyncState.SYNCED
        assert entry.sync_state == SyncState.PENDING
        assert synced.text == entry.text


def test_is_valid_date_key():
    assert is_valid_date_key("2024-02-29")
    assert not is_valid_date_key("2023-02-29")
    assert not is_valid_date_key("2024-5-1")
    assert not is_valid_date_key(None)


class TestReport:
    """Tests for Report dataclass."""

    def test_report_document_round_trip(self):
        report = Report(
            id="r1",
            start_date="2024-05-01",
            end_date="2024-05-07",
            created_at=10,
            summary="A good week",
            key_achievements=["shipped"],
            suggestions="rest",
        )

        data = report.to_dict()

        assert data["data"]["keyAchievements"] == ["shipped"]
        assert Report.from_dict(data) == report


class TestSyncSummary:
    """Tests for SyncSummary."""

    def test_clean_pass(self):
        summary = SyncSummary(owner="u1", date_key="2024-05-01", pushed=2, pulled=1)

        assert summary.status == "completed"
        assert summary.has_failures is False
        assert "2" in summary.message

    def test_failed_pushes_reported(self):
        summary = SyncSummary(
            owner="u1", date_key="2024-05-01", failed=3, last_error="timeout"
        )

        assert summary.status == "completed_with_errors"
        assert "3 entries failed" in summary.message
        assert summary.message.endswith("timeout")

    def test_to_dict(self):
        summary = SyncSummary(owner="u1", date_key="2024-05-01", tombstones_pending=1)

        data = summary.to_dict()

        assert data["owner"] == "u1"
        assert data["date"] == "2024-05-01"
        assert data["status"] == "completed_with_errors"
        assert data["completed_at"] is None
