"""
Validation Job Orchestrator.

Runs whole-document validation as a background asyncio task:

    queued -> running(tier2) -> running(tier3)? -> completed | failed

Tier 2 runs for every citation, bounded by a semaphore. Once every Tier-2
slot has resolved, Tier 3 runs for the citations Tier 2 escalated. All work
happens on copies of the citations; the new snapshot is written only after
the full citation list has been assembled.

Progress counters change only inside ``_update``, which is synchronous, so
concurrent slot completions can never interleave a read and a write.
"""

import asyncio
from collections.abc import AsyncIterator

from citecheck.errors import InfrastructureError
from citecheck.identification.context import extract_contexts
from citecheck.storage.job_store import JobStore, new_job_id
from citecheck.storage.schemas import DocumentSnapshot, SnapshotStatus
from citecheck.storage.snapshot_store import SnapshotStore
from citecheck.utils.logger import LogContext, get_logger
from citecheck.validation.pipeline import CitationValidator, mark_failed, reset
from citecheck.validation.schemas import (
    JobEvent,
    JobEventType,
    JobPhase,
    JobStatus,
    SlotStatus,
    TierProgress,
    ValidationJob,
    ValidationStage,
    utcnow,
)

logger = get_logger(__name__)

PROGRESS_EVENTS = {
    JobPhase.TIER2: JobEventType.TIER2_PROGRESS,
    JobPhase.TIER3: JobEventType.TIER3_PROGRESS,
}


def _progress_field(phase: JobPhase) -> str:
    return f"{phase.value}_progress"


class JobOrchestrator:
    """
    Start, track and stream validation jobs.

    Usage:
        orchestrator = JobOrchestrator(store, validator, concurrency=5)
        job = await orchestrator.start(snapshot)
        async for event in orchestrator.events(job.job_id):
            print(event.type, event.job.tier2_progress.percentage)
    """

    def __init__(
        self,
        store: SnapshotStore,
        validator: CitationValidator,
        jobs: JobStore | None = None,
        concurrency: int = 5,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.store = store
        self.validator = validator
        self.jobs = jobs or JobStore()
        self.concurrency = concurrency
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._subscribers: dict[str, list[asyncio.Queue[JobEvent]]] = {}

    # ========================================================================
    # Public API
    # ========================================================================

    async def start(self, snapshot: DocumentSnapshot, force: bool = False) -> ValidationJob:
        """
        Queue a validation run and return immediately.

        Args:
            snapshot: Snapshot whose citations should be validated
            force: Recorded on the job; the run re-validates every citation

        Returns:
            The queued job record
        """
        total = len(snapshot.document.citations)
        job = self.jobs.register(ValidationJob(
            job_id=new_job_id(),
            check_id=snapshot.snapshot_id,
            lineage_id=snapshot.lineage_id,
            force=force,
            tier2_progress=TierProgress(total=total, pending=total),
        ))

        if job.supersedes:
            logger.info(f"Job {job.job_id} supersedes {job.supersedes} for {job.check_id}")

        task = asyncio.create_task(self._run(job.job_id, snapshot), name=job.job_id)
        self._tasks[job.job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.job_id, None))

        logger.info(f"Queued job {job.job_id}: {total} citations from {snapshot.snapshot_id}")
        return job

    def get(self, job_id: str) -> ValidationJob:
        """Copy of the current job record."""
        return self.jobs.get(job_id)

    async def wait(self, job_id: str) -> ValidationJob:
        """Wait for a job to reach a terminal state and return it."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return self.jobs.get(job_id)

    async def events(self, job_id: str) -> AsyncIterator[JobEvent]:
        """
        Stream progress events for a job until it completes or fails.

        Subscribers that join a running job first receive its current state;
        a finished job yields its terminal event only.
        """
        job = self.jobs.get(job_id)

        if job.status.is_terminal:
            yield JobEvent(type=self._terminal_event(job), job=job)
            return

        queue: asyncio.Queue[JobEvent] = asyncio.Queue()
        self._subscribers.setdefault(job_id, []).append(queue)
        try:
            if job.status == JobStatus.RUNNING:
                yield JobEvent(type=self._current_event(job), job=job)
            while True:
                event = await queue.get()
                yield event
                if event.type.is_terminal:
                    return
        finally:
            subscribers = self._subscribers.get(job_id, [])
            if queue in subscribers:
                subscribers.remove(queue)
            if not subscribers:
                self._subscribers.pop(job_id, None)

    async def shutdown(self) -> None:
        """Cancel running jobs (application shutdown)."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ========================================================================
    # Job Execution
    # ========================================================================

    async def _run(self, job_id: str, snapshot: DocumentSnapshot) -> None:
        with LogContext(logger, job_id=job_id):
            try:
                await self._execute(job_id, snapshot)
            except InfrastructureError as e:
                logger.error(f"Job {job_id} failed: {e}")
                self._fail(job_id, str(e))
            except Exception as e:
                logger.exception(f"Job {job_id} failed unexpectedly: {e}")
                self._fail(job_id, f"Unexpected error: {e}")

    async def _execute(self, job_id: str, snapshot: DocumentSnapshot) -> None:
        document = snapshot.document
        citations = [c.model_copy(deep=True) for c in document.citations]
        contexts = extract_contexts(document, citations)
        semaphore = asyncio.Semaphore(self.concurrency)

        self._update(job_id, status=JobStatus.RUNNING, phase=JobPhase.TIER2, started_at=utcnow())
        self._emit(job_id, JobEventType.START)

        async def tier2_slot(index: int) -> None:
            citation = citations[index]
            async with semaphore:
                self._move(job_id, JobPhase.TIER2, SlotStatus.PENDING, SlotStatus.PROCESSING)
                try:
                    updated = await self.validator.run_tier2(citation, contexts[citation.id])
                except Exception as e:
                    logger.error(f"Tier 2 crashed for {citation.id}: {e}")
                    updated = mark_failed(reset(citation), str(e))

            citations[index] = updated
            outcome = (
                SlotStatus.FAILED
                if updated.stage == ValidationStage.FAILED
                else SlotStatus.COMPLETED
            )
            self._move(job_id, JobPhase.TIER2, SlotStatus.PROCESSING, outcome)

        await asyncio.gather(*(tier2_slot(i) for i in range(len(citations))))
        self._emit(job_id, JobEventType.TIER2_COMPLETE)

        escalated = [
            i for i, c in enumerate(citations) if c.stage == ValidationStage.TIER3_TRIGGERED
        ]

        if escalated:
            self._update(
                job_id,
                phase=JobPhase.TIER3,
                tier3_progress=TierProgress(total=len(escalated), pending=len(escalated)),
            )
            logger.info(f"Escalating {len(escalated)} citations to Tier 3")

            async def tier3_slot(index: int) -> None:
                citation = citations[index]
                async with semaphore:
                    self._move(job_id, JobPhase.TIER3, SlotStatus.PENDING, SlotStatus.PROCESSING)
                    try:
                        updated = await self.validator.run_tier3(
                            citation, contexts[citation.id]
                        )
                    except Exception as e:
                        logger.error(f"Tier 3 crashed for {citation.id}: {e}")
                        updated = mark_failed(citation, str(e))

                citations[index] = updated
                outcome = (
                    SlotStatus.COMPLETED
                    if updated.stage == ValidationStage.TIER3_DONE
                    else SlotStatus.FAILED
                )
                self._move(job_id, JobPhase.TIER3, SlotStatus.PROCESSING, outcome)

            await asyncio.gather(*(tier3_slot(i) for i in escalated))

        result = await self.store.save_new_version(
            snapshot,
            document.model_copy(update={"citations": citations}),
            status=SnapshotStatus.CITATIONS_VALIDATED,
            description=f"Validated by {job_id}",
        )

        job = self._update(
            job_id,
            status=JobStatus.COMPLETED,
            result_check_id=result.snapshot_id,
            finished_at=utcnow(),
        )
        self._emit(job_id, JobEventType.COMPLETE)
        logger.info(
            f"Job {job_id} completed: tier2 {job.tier2_progress.completed}/"
            f"{job.tier2_progress.total}, tier3 {job.tier3_progress.completed}/"
            f"{job.tier3_progress.total} -> {result.snapshot_id}"
        )

    # ========================================================================
    # Progress Bookkeeping
    # ========================================================================

    def _update(self, job_id: str, **updates: object) -> ValidationJob:
        """Apply field updates to a job record in one synchronous step."""
        job = self.jobs.get(job_id).model_copy(update=updates)
        self.jobs.put(job)
        return job

    def _move(
        self,
        job_id: str,
        phase: JobPhase,
        source: SlotStatus,
        target: SlotStatus,
    ) -> None:
        """Move one slot between counters of a tier."""
        field = _progress_field(phase)
        counts = getattr(self.jobs.get(job_id), field).model_dump()
        counts[source.value] -= 1
        counts[target.value] += 1
        self._update(job_id, **{field: TierProgress(**counts)})

        if target in (SlotStatus.COMPLETED, SlotStatus.FAILED):
            self._emit(job_id, PROGRESS_EVENTS[phase])

    def _fail(self, job_id: str, error: str) -> None:
        self._update(job_id, status=JobStatus.FAILED, error=error, finished_at=utcnow())
        self._emit(job_id, JobEventType.ERROR)

    def _emit(self, job_id: str, event_type: JobEventType) -> None:
        subscribers = self._subscribers.get(job_id)
        if not subscribers:
            return
        job = self.jobs.get(job_id)
        for queue in subscribers:
            queue.put_nowait(JobEvent(type=event_type, job=job.model_copy(deep=True)))

    @staticmethod
    def _terminal_event(job: ValidationJob) -> JobEventType:
        return JobEventType.COMPLETE if job.status == JobStatus.COMPLETED else JobEventType.ERROR

    @staticmethod
    def _current_event(job: ValidationJob) -> JobEventType:
        match job.phase:
            case JobPhase.TIER3:
                return JobEventType.TIER3_PROGRESS
            case JobPhase.TIER2:
                return JobEventType.TIER2_PROGRESS
        return JobEventType.START
