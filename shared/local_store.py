"""Local store for one owner's entries, tombstones and cached reports."""

import json
import logging
from dataclasses import replace
from typing import Iterable, List, Optional, Set

from shared.exceptions import LocalStorageError
from shared.merge_policy import MergeDecision, decide
from shared.models import Category, Entry, MergeResult, Report, SyncState
from shared.storage import KeyValueStorage

logger = logging.getLogger(__name__)

ENTRIES_KEY = "dailycraft_timeline"
TOMBSTONES_KEY = "dailycraft_deleted"
REPORTS_KEY = "dailycraft_ai_reports"


class LocalStore:
    """
    Canonical local copy of an owner's journal.

    Each collection is persisted as one JSON document in the injected storage,
    so every mutation rewrites a whole collection in a single ``set`` call.
    """

    def __init__(self, storage: KeyValueStorage, owner: str):
        """
        Initialize the local store.

        Args:
            storage: Key-value persistence backend
            owner: Owner whose profile this store holds
        """
        self.storage = storage
        self.owner = owner

    def _key(self, name: str) -> str:
        return f"{self.owner}/{name}"

    def _load(self, name: str) -> list:
        raw = self.storage.get(self._key(name))
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise LocalStorageError(f"Corrupt local record {self._key(name)}: {e}") from e
        if not isinstance(data, list):
            raise LocalStorageError(f"Corrupt local record {self._key(name)}: not a list")
        return data

    def _save(self, name: str, data: list) -> None:
        self.storage.set(self._key(name), json.dumps(data, ensure_ascii=False))

    def _save_entries(self, entries: List[Entry]) -> None:
        self._save(ENTRIES_KEY, [entry.to_dict() for entry in entries])

    # Entries

    def get_all(self) -> List[Entry]:
        """Return every local entry in storage order."""
        return [Entry.from_dict(doc) for doc in self._load(ENTRIES_KEY)]

    def get_by_date(self, date_key: str) -> List[Entry]:
        """Return the entries of one date, oldest first."""
        entries = [entry for entry in self.get_all() if entry.date_key == date_key]
        return sorted(entries, key=lambda entry: entry.created_at)

    def get(self, entry_id: str) -> Optional[Entry]:
        for entry in self.get_all():
            if entry.id == entry_id:
                return entry
        return None

    def get_pending(self, date_key: str) -> List[Entry]:
        """
        Return the entries of one date that still need a push.

        That is every entry not yet synced, plus synced entries holding an
        attachment whose earlier upload failed.
        """
        return [
            entry for entry in self.get_by_date(date_key)
            if entry.sync_state != SyncState.SYNCED or entry.has_inline_attachments
        ]

    def upsert(self, entry: Entry) -> None:
        """Insert an entry, or replace the one with the same id in place."""
        entries = self.get_all()
        for index, existing in enumerate(entries):
            if existing.id == entry.id:
                entries[index] = entry
                break
        else:
            entries.append(entry)
        self._save_entries(entries)

    def add_entry(self, entry: Entry) -> Entry:
        """
        Record a newly written entry.

        Args:
            entry: Entry created on this device

        Returns:
            The stored entry, always ``pending``

        Raises:
            ValueError: If the entry is malformed
        """
        entry.validate()
        stored = entry.with_sync_state(SyncState.PENDING)
        self.upsert(stored)
        return stored

    def edit_entry(
        self,
        entry_id: str,
        text: Optional[str] = None,
        category: Optional[Category] = None
    ) -> Entry:
        """
        Apply a local edit. The entry goes back to ``pending``.

        Raises:
            KeyError: If no entry has this id
            ValueError: If the edit leaves the entry empty
        """
        entry = self.get(entry_id)
        if entry is None:
            raise KeyError(entry_id)

        changes = {"sync_state": SyncState.PENDING}
        if text is not None:
            changes["text"] = text
        if category is not None:
            changes["category"] = category

        edited = replace(entry, **changes)
        edited.validate()
        self.upsert(edited)
        return edited

    def delete(self, entry_id: str) -> bool:
        """
        Remove an entry and tombstone its id.

        The tombstone is written even when the entry is not present locally,
        since it is the only record telling the next sync to delete remotely.

        Returns:
            True if a local entry was removed
        """
        entries = self.get_all()
        remaining = [entry for entry in entries if entry.id != entry_id]
        removed = len(remaining) != len(entries)
        self.mark_deleted(entry_id)
        if removed:
            self._save_entries(remaining)
        return removed

    # Tombstones

    def mark_deleted(self, entry_id: str) -> None:
        ids = self._load(TOMBSTONES_KEY)
        if entry_id not in ids:
            ids.append(entry_id)
            self._save(TOMBSTONES_KEY, ids)

    def clear_deleted(self, entry_id: str) -> None:
        ids = self._load(TOMBSTONES_KEY)
        if entry_id in ids:
            self._save(TOMBSTONES_KEY, [i for i in ids if i != entry_id])

    def list_deleted(self) -> Set[str]:
        return set(self._load(TOMBSTONES_KEY))

    # Merge

    def merge_remote(
        self,
        remote_entries: Iterable[Entry],
        date_scope: Optional[str] = None
    ) -> MergeResult:
        """
        Merge entries pulled from the remote store.

        Args:
            remote_entries: Entries read from the remote store
            date_scope: If given, entries for other dates are skipped

        Returns:
            MergeResult with adopted and skipped counts
        """
        tombstones = self.list_deleted()
        entries = self.get_all()
        positions = {entry.id: index for index, entry in enumerate(entries)}
        result = MergeResult()

        for remote in remote_entries:
            if date_scope is not None and remote.date_key != date_scope:
                logger.warning(
                    f"Skipping remote entry {remote.id} dated {remote.date_key} "
                    f"outside scope {date_scope}"
                )
                result.skipped += 1
                continue

            index = positions.get(remote.id)
            local = entries[index] if index is not None else None
            decision = decide(local, remote, remote.id in tombstones)

            if decision == MergeDecision.SKIP:
                result.skipped += 1
                continue

            adopted = remote.with_sync_state(SyncState.SYNCED)
            if index is None:
                positions[adopted.id] = len(entries)
                entries.append(adopted)
            else:
                entries[index] = adopted
            result.adopted += 1

        if result.adopted:
            self._save_entries(entries)

        logger.info(
            f"Merged remote entries for {self.owner}: "
            f"{result.adopted} adopted, {result.skipped} skipped"
        )
        return result

    # Reports

    def list_reports(self) -> List[Report]:
        """Return cached reports, newest first."""
        return [Report.from_dict(doc) for doc in self._load(REPORTS_KEY)]

    def save_report(self, report: Report) -> None:
        """Store a report, replacing any older one for the same date range."""
        others = [
            doc for doc in self._load(REPORTS_KEY)
            if doc.get("startDate") != report.start_date or doc.get("endDate") != report.end_date
        ]
        self._save(REPORTS_KEY, [report.to_dict()] + others)

    def latest_report(self, start_date: str, end_date: str) -> Optional[Report]:
        for report in self.list_reports():
            if report.start_date == start_date and report.end_date == end_date:
                return report
        return None
