"""Sync orchestration logic."""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from shared.exceptions import SyncInProgressError
from shared.local_store import LocalStore
from shared.models import Entry, SyncState, SyncSummary
from shared.storage import KeyValueStorage
from services.remote_store.adapter import RemoteAdapter
from services.sync_service.notifications import NotificationService

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Reconciles an owner's local journal with the remote store, one date at a time."""

    def __init__(
        self,
        remote: RemoteAdapter,
        storage: KeyValueStorage,
        notification_service: Optional[NotificationService] = None,
        push_concurrency: int = 1
    ):
        """
        Initialize the sync orchestrator.

        Args:
            remote: Remote adapter for the object store
            storage: Persistence backend of the local stores
            notification_service: Notified when a pass ends with failures
            push_concurrency: Number of entries pushed at once (1 = sequential)
        """
        self.remote = remote
        self.storage = storage
        self.notification_service = notification_service or NotificationService()
        self.push_concurrency = max(1, push_concurrency)
        self._locks: Dict[str, asyncio.Lock] = {}

    def local_store(self, owner: str) -> LocalStore:
        return LocalStore(self.storage, owner)

    def is_syncing(self, owner: str) -> bool:
        lock = self._locks.get(owner)
        return lock is not None and lock.locked()

    async def run_sync(self, owner: str, date_key: str) -> SyncSummary:
        """
        Run one full sync pass for an owner and date.

        Phases run once each, in order:
        1. Drain tombstones (trash remotely, clear on success or not-found)
        2. Pull remote entries for the date and merge them
        3. Push local entries for the date that are not synced

        Remote failures never escape; they are counted in the summary.
        Local storage failures do escape.

        Args:
            owner: Owner identity
            date_key: Date to reconcile (YYYY-MM-DD)

        Returns:
            SyncSummary for the pass

        Raises:
            SyncInProgressError: If a pass is already running for this owner
            LocalStorageError: If local persistence fails
        """
        lock = self._locks.setdefault(owner, asyncio.Lock())
        if lock.locked():
            raise SyncInProgressError(owner)

        async with lock:
            store = self.local_store(owner)
            summary = SyncSummary(owner=owner, date_key=date_key)
            logger.info(f"Starting sync for {owner} on {date_key}")

            await self._drain_tombstones(store, owner, date_key, summary)
            await self._pull(store, owner, date_key, summary)
            await self._push(store, owner, date_key, summary)

            summary.completed_at = datetime.utcnow()
            logger.info(f"Sync for {owner} on {date_key} finished: {summary.message}")

        if summary.has_failures:
            await self._notify(summary)

        return summary

    async def _drain_tombstones(
        self,
        store: LocalStore,
        owner: str,
        date_key: str,
        summary: SyncSummary
    ) -> None:
        for entry_id in sorted(store.list_deleted()):
            try:
                found = await self.remote.trash_entry(owner, date_key, entry_id)
            except Exception as e:
                logger.error(f"Failed to delete entry {entry_id} remotely: {e}", exc_info=True)
                summary.tombstones_pending += 1
                summary.last_error = str(e)
                continue

            if not found:
                logger.info(f"Entry {entry_id} already absent remotely")
            store.clear_deleted(entry_id)
            summary.tombstones_cleared += 1

    async def _pull(
        self,
        store: LocalStore,
        owner: str,
        date_key: str,
        summary: SyncSummary
    ) -> None:
        try:
            remote_entries = await self.remote.fetch_entries(owner, date_key)
        except Exception as e:
            logger.error(f"Pull failed for {owner} on {date_key}: {e}", exc_info=True)
            summary.pull_error = str(e)
            summary.last_error = str(e)
            return

        summary.pulled = len(remote_entries)
        result = store.merge_remote(remote_entries, date_scope=date_key)
        summary.adopted = result.adopted

    async def _push(
        self,
        store: LocalStore,
        owner: str,
        date_key: str,
        summary: SyncSummary
    ) -> None:
        pending = store.get_pending(date_key)
        if not pending:
            return

        logger.info(f"Pushing {len(pending)} entries for {owner} on {date_key}")
        semaphore = asyncio.Semaphore(self.push_concurrency)

        async def push_one(entry: Entry) -> None:
            async with semaphore:
                try:
                    synced = await self.remote.upload_entry(owner, entry)
                except Exception as e:
                    logger.error(f"Failed to push entry {entry.id}: {e}", exc_info=True)
                    summary.failed += 1
                    summary.last_error = str(e)
                    self._record(store, entry, entry.with_sync_state(SyncState.ERROR))
                    return

                summary.pushed += 1
                self._record(store, entry, synced.with_sync_state(SyncState.SYNCED))

        await asyncio.gather(*(push_one(entry) for entry in pending))

    @staticmethod
    def _record(store: LocalStore, pushed: Entry, outcome: Entry) -> None:
        """
        Store the outcome of a push unless the entry changed meanwhile.

        An entry deleted during the upload stays deleted; one edited during the
        upload stays pending for the next pass.
        """
        current = store.get(pushed.id)
        if current is None:
            logger.info(f"Entry {pushed.id} was deleted during push, not restoring it")
            return
        if current != pushed:
            logger.info(f"Entry {pushed.id} was edited during push, leaving it pending")
            return
        store.upsert(outcome)

    async def _notify(self, summary: SyncSummary) -> None:
        try:
            await self.notification_service.send_sync_failure_notification(
                owner=summary.owner,
                date_key=summary.date_key,
                error_message=summary.message,
                context=summary.to_dict()
            )
        except Exception as e:
            logger.error(f"Failed to send sync failure notification: {e}")
