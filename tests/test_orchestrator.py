"""
Tests for the Validation Job Orchestrator.

Whole-document jobs over scripted panels: progress counters, bounded
concurrency, Tier-3 escalation of a subset, failure handling and the
progress event stream.
"""

import asyncio
from pathlib import Path

import pytest

from citecheck.errors import NotFoundError
from citecheck.storage.schemas import SnapshotStatus
from citecheck.storage.snapshot_store import SnapshotStore
from citecheck.validation.orchestrator import JobOrchestrator
from citecheck.validation.schemas import (
    JobEventType,
    JobPhase,
    JobStatus,
    ValidationStage,
    Verdict,
)
from tests.conftest import (
    ConcurrencyGauge,
    ScriptedAgent,
    build_validator,
    score_panel,
)


def progress_sums_to_total(progress) -> bool:
    return (
        progress.pending + progress.processing + progress.completed + progress.failed
        == progress.total
    )


def escalated_ids(snapshot) -> set[str]:
    return {c.id for c in snapshot.document.citations if c.tier_3 is not None}


def tier3_matches_trigger(snapshot) -> bool:
    """Tier 3 is present on exactly the citations this version's Tier 2 escalated."""
    return all(
        (c.tier_3 is not None) == c.validation.consensus.tier_3_trigger
        for c in snapshot.document.citations
    )


# ============================================================================
# Job Execution Tests
# ============================================================================


class TestJobExecution:
    """Tests for running a validation job to completion."""

    @pytest.mark.asyncio
    async def test_all_citations_validated(
        self, snapshot_store: SnapshotStore, many_citations_document
    ) -> None:
        snapshot = await snapshot_store.create(many_citations_document)
        orchestrator = JobOrchestrator(snapshot_store, build_validator(), concurrency=3)

        queued = await orchestrator.start(snapshot)
        job = await orchestrator.wait(queued.job_id)

        assert queued.status == JobStatus.QUEUED
        assert job.status == JobStatus.COMPLETED
        assert job.tier2_progress.total == 10
        assert job.tier2_progress.completed == 10
        assert job.tier2_progress.percentage == 100
        assert job.tier3_progress.total == 0
        assert progress_sums_to_total(job.tier2_progress)
        assert job.started_at is not None
        assert job.finished_at is not None

        result = await snapshot_store.get(job.result_check_id)
        assert result.version == 2
        assert result.status == SnapshotStatus.CITATIONS_VALIDATED
        assert all(c.stage == ValidationStage.TIER2_DONE for c in result.document.citations)
        assert [c.id for c in result.document.citations] == [
            f"cit_{n:03d}" for n in range(1, 11)
        ]

    @pytest.mark.asyncio
    async def test_source_snapshot_untouched(
        self, snapshot_store: SnapshotStore, many_citations_document
    ) -> None:
        snapshot = await snapshot_store.create(many_citations_document)
        orchestrator = JobOrchestrator(snapshot_store, build_validator())

        await orchestrator.wait((await orchestrator.start(snapshot)).job_id)

        original = await snapshot_store.get(snapshot.snapshot_id)
        assert all(c.stage == ValidationStage.UNVALIDATED for c in original.document.citations)

    @pytest.mark.asyncio
    async def test_bounded_concurrency(
        self, snapshot_store: SnapshotStore, many_citations_document
    ) -> None:
        gauge = ConcurrencyGauge()
        validator = build_validator(
            tier2_agents=[ScriptedAgent("agent_1", score=9, delay=0.02, gauge=gauge)],
            tier2_quorum=1,
        )
        snapshot = await snapshot_store.create(many_citations_document)
        orchestrator = JobOrchestrator(snapshot_store, validator, concurrency=3)

        job = await orchestrator.wait((await orchestrator.start(snapshot)).job_id)

        assert job.status == JobStatus.COMPLETED
        assert gauge.peak == 3

    @pytest.mark.asyncio
    async def test_tier3_for_escalated_subset(
        self, snapshot_store: SnapshotStore, many_citations_document
    ) -> None:
        """Test only the citations Tier 2 escalated reach the investigation panel."""
        flagged = {"cit_002": 6.0, "cit_007": 6.0}
        tier2_agents = score_panel([9, 9, 9, 9, 9], scores_by_citation=flagged)
        validator = build_validator(tier2_agents=tier2_agents)
        tier3_agents = validator.investigator.evaluator.agents
        snapshot = await snapshot_store.create(many_citations_document)
        orchestrator = JobOrchestrator(snapshot_store, validator)

        job = await orchestrator.wait((await orchestrator.start(snapshot)).job_id)

        assert job.phase == JobPhase.TIER3
        assert job.tier3_progress.total == 2
        assert job.tier3_progress.completed == 2
        assert sorted(tier3_agents[0].calls) == ["cit_002", "cit_007"]

        result = await snapshot_store.get(job.result_check_id)
        stages = {c.id: c.stage for c in result.document.citations}
        assert stages["cit_002"] == ValidationStage.TIER3_DONE
        assert stages["cit_007"] == ValidationStage.TIER3_DONE
        assert stages["cit_001"] == ValidationStage.TIER2_DONE

    @pytest.mark.asyncio
    async def test_all_agents_failing_still_completes(
        self, snapshot_store: SnapshotStore, many_citations_document
    ) -> None:
        agents = [ScriptedAgent(f"agent_{i}", error=RuntimeError("down")) for i in range(5)]
        snapshot = await snapshot_store.create(many_citations_document)
        orchestrator = JobOrchestrator(snapshot_store, build_validator(tier2_agents=agents))

        job = await orchestrator.wait((await orchestrator.start(snapshot)).job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.tier2_progress.completed == 10
        result = await snapshot_store.get(job.result_check_id)
        assert all(c.is_validated for c in result.document.citations)

    @pytest.mark.asyncio
    async def test_mixed_forms_fail_slots(
        self, snapshot_store: SnapshotStore, many_citations_document
    ) -> None:
        agents = score_panel([9, 9, 9]) + [
            ScriptedAgent("legacy_1", verdict=Verdict.VALID),
            ScriptedAgent("legacy_2", verdict=Verdict.VALID),
        ]
        snapshot = await snapshot_store.create(many_citations_document)
        orchestrator = JobOrchestrator(snapshot_store, build_validator(tier2_agents=agents))

        job = await orchestrator.wait((await orchestrator.start(snapshot)).job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.tier2_progress.failed == 10
        assert progress_sums_to_total(job.tier2_progress)
        result = await snapshot_store.get(job.result_check_id)
        assert all(c.stage == ValidationStage.FAILED for c in result.document.citations)

    @pytest.mark.asyncio
    async def test_store_failure_fails_job(
        self, tmp_path: Path, snapshot_store: SnapshotStore, many_citations_document
    ) -> None:
        snapshot = await snapshot_store.create(many_citations_document)
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        snapshot_store.persist_dir = blocker
        orchestrator = JobOrchestrator(snapshot_store, build_validator())

        job = await orchestrator.wait((await orchestrator.start(snapshot)).job_id)

        assert job.status == JobStatus.FAILED
        assert job.error.startswith("Failed to persist")
        assert job.result_check_id is None

    @pytest.mark.asyncio
    async def test_progress_while_running(
        self, snapshot_store: SnapshotStore, many_citations_document
    ) -> None:
        """Test the job record shows calls in flight before any finishes."""
        gate = asyncio.Event()
        gauge = ConcurrencyGauge()
        validator = build_validator(
            tier2_agents=[ScriptedAgent("agent_1", score=9, gate=gate, gauge=gauge)],
            tier2_quorum=1,
        )
        snapshot = await snapshot_store.create(many_citations_document)
        orchestrator = JobOrchestrator(snapshot_store, validator, concurrency=3)

        job = await orchestrator.start(snapshot)
        for _ in range(200):
            if gauge.current == 3:
                break
            await asyncio.sleep(0.005)

        running = orchestrator.get(job.job_id)
        assert running.status == JobStatus.RUNNING
        assert running.phase == JobPhase.TIER2
        assert running.tier2_progress.processing == 3
        assert running.tier2_progress.pending == 10 - 3
        assert running.tier2_progress.completed == 0
        assert progress_sums_to_total(running.tier2_progress)

        gate.set()
        done = await orchestrator.wait(job.job_id)

        assert done.tier2_progress.processing == 0
        assert done.tier2_progress.completed == 10

    @pytest.mark.asyncio
    async def test_rerun_supersedes(
        self, snapshot_store: SnapshotStore, many_citations_document
    ) -> None:
        """Test two forced runs whose Tier-2 outcomes differ each stay self-consistent."""
        tier2_agents = score_panel([9, 9, 9, 9, 9], escalate_first=3)
        snapshot = await snapshot_store.create(many_citations_document)
        orchestrator = JobOrchestrator(snapshot_store, build_validator(tier2_agents=tier2_agents))

        first = await orchestrator.start(snapshot)
        first_done = await orchestrator.wait(first.job_id)
        second = await orchestrator.start(snapshot, force=True)
        second_done = await orchestrator.wait(second.job_id)

        assert second.supersedes == first.job_id
        assert second_done.force is True
        assert first_done.result_check_id != second_done.result_check_id

        first_result = await snapshot_store.get(first_done.result_check_id)
        second_result = await snapshot_store.get(second_done.result_check_id)
        assert {first_result.version, second_result.version} == {2, 3}
        assert escalated_ids(first_result)
        assert escalated_ids(second_result) == set()
        assert tier3_matches_trigger(first_result)
        assert tier3_matches_trigger(second_result)

    @pytest.mark.asyncio
    async def test_concurrent_reruns_stay_consistent(
        self, snapshot_store: SnapshotStore, many_citations_document
    ) -> None:
        tier2_agents = score_panel([9, 9, 9, 9, 9], escalate_first=4)
        snapshot = await snapshot_store.create(many_citations_document)
        orchestrator = JobOrchestrator(snapshot_store, build_validator(tier2_agents=tier2_agents))

        first = await orchestrator.start(snapshot)
        second = await orchestrator.start(snapshot, force=True)
        done = [await orchestrator.wait(first.job_id), await orchestrator.wait(second.job_id)]

        results = [await snapshot_store.get(j.result_check_id) for j in done]
        assert second.supersedes == first.job_id
        assert sorted(r.version for r in results) == [2, 3]
        assert all(tier3_matches_trigger(r) for r in results)
        assert sum(j.tier3_progress.total for j in done) == sum(
            len(escalated_ids(r)) for r in results
        )

    def test_invalid_concurrency(self, snapshot_store: SnapshotStore) -> None:
        with pytest.raises(ValueError):
            JobOrchestrator(snapshot_store, build_validator(), concurrency=0)


# ============================================================================
# Event Stream Tests
# ============================================================================


class TestJobEvents:
    """Tests for the progress event stream."""

    @pytest.mark.asyncio
    async def test_event_sequence(
        self, snapshot_store: SnapshotStore, many_citations_document
    ) -> None:
        flagged = {"cit_003": 6.0}
        validator = build_validator(
            tier2_agents=score_panel([9, 9, 9, 9, 9], scores_by_citation=flagged)
        )
        snapshot = await snapshot_store.create(many_citations_document)
        orchestrator = JobOrchestrator(snapshot_store, validator)

        job = await orchestrator.start(snapshot)
        events = [event async for event in orchestrator.events(job.job_id)]

        types = [e.type for e in events]
        assert types[0] == JobEventType.START
        assert types[1:11] == [JobEventType.TIER2_PROGRESS] * 10
        assert types[11] == JobEventType.TIER2_COMPLETE
        assert types[12] == JobEventType.TIER3_PROGRESS
        assert types[-1] == JobEventType.COMPLETE
        assert len(types) == 14

        currents = [e.job.tier2_progress.current for e in events[1:11]]
        assert currents == list(range(1, 11))
        assert events[-1].job.result_check_id is not None

    @pytest.mark.asyncio
    async def test_finished_job_yields_terminal_event(
        self, snapshot_store: SnapshotStore, many_citations_document
    ) -> None:
        snapshot = await snapshot_store.create(many_citations_document)
        orchestrator = JobOrchestrator(snapshot_store, build_validator())
        job = await orchestrator.start(snapshot)
        await orchestrator.wait(job.job_id)

        events = [event async for event in orchestrator.events(job.job_id)]

        assert [e.type for e in events] == [JobEventType.COMPLETE]
        assert events[0].job.status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_failed_job_emits_error(
        self, tmp_path: Path, snapshot_store: SnapshotStore, many_citations_document
    ) -> None:
        snapshot = await snapshot_store.create(many_citations_document)
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        snapshot_store.persist_dir = blocker
        orchestrator = JobOrchestrator(snapshot_store, build_validator())

        job = await orchestrator.start(snapshot)
        events = [event async for event in orchestrator.events(job.job_id)]

        assert events[-1].type == JobEventType.ERROR
        assert events[-1].job.error

    @pytest.mark.asyncio
    async def test_unknown_job(self, snapshot_store: SnapshotStore) -> None:
        orchestrator = JobOrchestrator(snapshot_store, build_validator())

        with pytest.raises(NotFoundError):
            orchestrator.get("job_missing")
        with pytest.raises(NotFoundError):
            async for _ in orchestrator.events("job_missing"):
                pass
