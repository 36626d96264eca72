"""Document snapshot and validation job persistence."""

from citecheck.storage.job_store import JobStore
from citecheck.storage.schemas import DocumentSnapshot, SnapshotStatus, SnapshotSummary
from citecheck.storage.snapshot_store import SnapshotStore

__all__ = [
    "DocumentSnapshot",
    "JobStore",
    "SnapshotStatus",
    "SnapshotStore",
    "SnapshotSummary",
]
