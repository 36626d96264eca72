"""
Document Snapshot Store.

Copy-on-write persistence for document versions. Snapshots are kept in
memory and, when a directory is configured, written as one JSON file per
snapshot so a restarted service can reload every lineage.

Readers always receive deep copies; a stored snapshot is never mutated.
"""

import asyncio
import json
import uuid
from pathlib import Path

from pydantic import ValidationError

from citecheck.errors import InfrastructureError, NotFoundError
from citecheck.identification.schemas import CitationDocument
from citecheck.storage.schemas import DocumentSnapshot, SnapshotStatus, SnapshotSummary
from citecheck.utils.logger import get_logger

logger = get_logger(__name__)


def new_snapshot_id() -> str:
    return f"chk_{uuid.uuid4().hex[:12]}"


class SnapshotStore:
    """
    Versioned store of document snapshots.

    Version numbers and citation IDs are allocated under a lock so
    concurrent writers in the same lineage never collide. Each lineage keeps
    one citation counter; writers deriving from an older version reserve
    new IDs from it instead of from their parent's counter.

    Usage:
        store = SnapshotStore(persist_dir=Path("./data/snapshots"))
        first = await store.create(document)
        second = await store.save_new_version(first, updated_document)
    """

    def __init__(self, persist_dir: Path | None = None) -> None:
        """
        Initialize the store.

        Args:
            persist_dir: Optional directory for JSON snapshot files
        """
        self.persist_dir = persist_dir
        self._snapshots: dict[str, DocumentSnapshot] = {}
        self._lineages: dict[str, list[str]] = {}
        self._counters: dict[str, int] = {}
        self._lock = asyncio.Lock()

        if persist_dir and persist_dir.exists():
            self._load()

    def __len__(self) -> int:
        return len(self._snapshots)

    # ========================================================================
    # Writes
    # ========================================================================

    async def create(
        self,
        document: CitationDocument,
        description: str | None = "Uploaded",
    ) -> DocumentSnapshot:
        """
        Start a new lineage with version 1.

        A document imported with citations but no counter gets its counter
        seeded past the highest existing citation number.
        """
        snapshot = DocumentSnapshot(
            snapshot_id=new_snapshot_id(),
            lineage_id=f"lin_{uuid.uuid4().hex[:12]}",
            version=1,
            status=(
                SnapshotStatus.CITATIONS_IDENTIFIED
                if document.citations
                else SnapshotStatus.UPLOADED
            ),
            description=description,
            document=document.model_copy(deep=True),
            citation_counter=document.max_citation_number() + 1,
        )
        async with self._lock:
            await self._write(snapshot)
        logger.info(f"Created check {snapshot.snapshot_id} (lineage {snapshot.lineage_id})")
        return snapshot.model_copy(deep=True)

    async def save_new_version(
        self,
        parent: DocumentSnapshot,
        document: CitationDocument,
        status: SnapshotStatus | None = None,
        citation_counter: int | None = None,
        description: str | None = None,
    ) -> DocumentSnapshot:
        """
        Write a new version derived from ``parent``.

        The version number is one past the lineage's current highest, so two
        writers deriving from the same parent each get their own version.

        Args:
            parent: Snapshot the new version derives from
            document: Fully assembled document for the new version
            status: New status (defaults to the parent's)
            citation_counter: Next citation number (defaults to the parent's)
            description: What produced the version

        Returns:
            The stored snapshot (a copy)

        Raises:
            NotFoundError: If the parent's lineage is unknown
            InfrastructureError: If the snapshot cannot be persisted
        """
        counter = citation_counter if citation_counter is not None else parent.citation_counter
        # The counter never moves backwards within a lineage.
        counter = max(counter, parent.citation_counter)

        async with self._lock:
            versions = self._lineages.get(parent.lineage_id)
            if not versions:
                raise NotFoundError(f"Unknown lineage: {parent.lineage_id}")

            latest = self._snapshots[versions[-1]]
            snapshot = DocumentSnapshot(
                snapshot_id=new_snapshot_id(),
                lineage_id=parent.lineage_id,
                version=latest.version + 1,
                parent_id=parent.snapshot_id,
                status=status or parent.status,
                description=description,
                document=document.model_copy(deep=True),
                citation_counter=max(
                    counter, latest.citation_counter, self._counters[parent.lineage_id]
                ),
            )
            await self._write(snapshot)

        logger.info(
            f"Saved {snapshot.snapshot_id} as version {snapshot.version} "
            f"of {snapshot.lineage_id} ({description or 'update'})"
        )
        return snapshot.model_copy(deep=True)

    async def reserve_citation_ids(self, lineage_id: str, count: int) -> int:
        """
        Reserve ``count`` consecutive citation numbers for a lineage.

        Numbers handed out here are never handed out again, even when the
        caller fails before saving a version that uses them.

        Returns:
            The first reserved number

        Raises:
            NotFoundError: If the lineage is unknown
            ValueError: If ``count`` is negative
        """
        if count < 0:
            raise ValueError(f"count must be >= 0, got {count}")

        async with self._lock:
            if lineage_id not in self._counters:
                raise NotFoundError(f"Unknown lineage: {lineage_id}")
            first = self._counters[lineage_id]
            self._counters[lineage_id] = first + count

        if count:
            logger.debug(f"Reserved citation numbers {first}-{first + count - 1} in {lineage_id}")
        return first

    async def _write(self, snapshot: DocumentSnapshot) -> None:
        if self.persist_dir is not None:
            try:
                await asyncio.to_thread(self._save_file, snapshot)
            except OSError as e:
                raise InfrastructureError(f"Failed to persist {snapshot.snapshot_id}: {e}") from e

        self._register(snapshot)

    def _register(self, snapshot: DocumentSnapshot) -> None:
        self._snapshots[snapshot.snapshot_id] = snapshot
        self._lineages.setdefault(snapshot.lineage_id, []).append(snapshot.snapshot_id)
        self._counters[snapshot.lineage_id] = max(
            self._counters.get(snapshot.lineage_id, 1), snapshot.citation_counter
        )

    # ========================================================================
    # Reads
    # ========================================================================

    async def get(self, snapshot_id: str) -> DocumentSnapshot:
        """
        Raises:
            NotFoundError: If no snapshot has this ID
        """
        snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None:
            raise NotFoundError(f"Check not found: {snapshot_id}")
        return snapshot.model_copy(deep=True)

    async def latest(self, lineage_id: str) -> DocumentSnapshot:
        """Current (highest) version of a lineage."""
        versions = self._lineages.get(lineage_id)
        if not versions:
            raise NotFoundError(f"Unknown lineage: {lineage_id}")
        return self._snapshots[versions[-1]].model_copy(deep=True)

    async def versions(self, snapshot_id: str) -> list[SnapshotSummary]:
        """Version history of the lineage a snapshot belongs to, oldest first."""
        snapshot = await self.get(snapshot_id)
        return [
            SnapshotSummary(
                snapshot_id=s.snapshot_id,
                version=s.version,
                parent_id=s.parent_id,
                status=s.status,
                created_at=s.created_at,
                description=s.description,
                citation_count=len(s.document.citations),
            )
            for s in (self._snapshots[i] for i in self._lineages[snapshot.lineage_id])
        ]

    # ========================================================================
    # Persistence
    # ========================================================================

    def _save_file(self, snapshot: DocumentSnapshot) -> None:
        assert self.persist_dir is not None
        self.persist_dir.mkdir(parents=True, exist_ok=True)
        path = self.persist_dir / f"{snapshot.snapshot_id}.json"
        tmp = path.with_suffix(".json.tmp")

        with open(tmp, "w") as f:
            json.dump(snapshot.model_dump(mode="json"), f, indent=2)
        tmp.replace(path)

    def _load(self) -> None:
        """Load every snapshot file from the persist directory."""
        assert self.persist_dir is not None
        loaded: list[DocumentSnapshot] = []

        for path in sorted(self.persist_dir.glob("*.json")):
            try:
                with open(path) as f:
                    loaded.append(DocumentSnapshot.model_validate(json.load(f)))
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.error(f"Skipping unreadable snapshot {path.name}: {e}")

        for snapshot in sorted(loaded, key=lambda s: (s.lineage_id, s.version)):
            self._register(snapshot)

        if loaded:
            logger.info(
                f"Loaded {len(loaded)} snapshots in {len(self._lineages)} lineages "
                f"from {self.persist_dir}"
            )
