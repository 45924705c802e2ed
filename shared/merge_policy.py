"""Decides whether a pulled remote entry may replace the local copy."""

from enum import Enum
from typing import Optional

from shared.models import Entry, SyncState


class MergeDecision(str, Enum):
    SKIP = "skip"
    ADOPT = "adopt"


def decide(local: Optional[Entry], remote: Entry, is_tombstoned: bool) -> MergeDecision:
    """
    Decide what to do with one remote entry.

    A pending local delete always wins. Otherwise the remote copy is adopted
    when there is no local copy or the local copy is already synced; local
    entries that are pending or errored are never overwritten by a pull.
    Concurrent edits on both sides are not detected.

    Args:
        local: Local entry with the same id, or None
        remote: Entry read from the remote store
        is_tombstoned: Whether the id has a pending local deletion

    Returns:
        MergeDecision.ADOPT or MergeDecision.SKIP
    """
    if is_tombstoned:
        return MergeDecision.SKIP
    if local is None:
        return MergeDecision.ADOPT
    if local.sync_state == SyncState.SYNCED:
        return MergeDecision.ADOPT
    return MergeDecision.SKIP
