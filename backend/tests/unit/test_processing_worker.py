"""
Unit tests for the processing worker.

The AI provider is an AsyncMock; retries sleep through a recorder so no
real time passes.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from app.domain.analysis import AnalysisStatus
from app.domain.billing import PlanTier
from app.infrastructure.exceptions import (
    AnalysisMalformedResponse,
    AnalysisProviderError,
    ConfigurationError,
    GENERIC_CONFIG_MESSAGE,
    PROCESSING_FAILED_MESSAGE,
    TranscriptionFailed,
)
from app.infrastructure.db.models import Analysis
from app.services.dispatcher import ProcessingJob
from app.services.processing_worker import ProcessingWorker


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def ai() -> MagicMock:
    provider = MagicMock()
    provider.transcribe = AsyncMock(return_value="Both parties agree to the terms.")
    provider.analyze = AsyncMock(return_value={"summary": "Agreement reached"})
    return provider


@pytest.fixture
def worker(analyses, profiles, ai, storage, sleeps) -> ProcessingWorker:
    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    return ProcessingWorker(analyses, profiles, ai, storage, sleep=record_sleep)


class TestSuccess:

    async def test_completes_and_clears_transcript(self, worker, analyses, ai, make_analysis):
        record = await make_analysis(status=AnalysisStatus.PROCESSING, tier=PlanTier.BASIC)

        outcome = await worker.process(ProcessingJob(analysis_id=record.id))

        assert outcome == AnalysisStatus.COMPLETED
        stored = await analyses.get_by_id(record.id)
        assert stored.status == "completed"
        assert stored.result == {"summary": "Agreement reached"}
        assert stored.transcript is None
        ai.analyze.assert_awaited_once_with("Both parties agree to the terms.", PlanTier.BASIC)

    async def test_uses_in_memory_audio_when_present(self, worker, ai, make_analysis):
        record = await make_analysis(status=AnalysisStatus.PROCESSING, tier=PlanTier.PRO)
        job = ProcessingJob(analysis_id=record.id, audio=b"fresh", content_type="audio/wav")

        await worker.process(job)

        ai.transcribe.assert_awaited_once_with(b"fresh", "meeting.mp3", "audio/wav")
        assert job.audio is None

    async def test_reads_audio_from_storage(self, worker, ai, make_analysis):
        record = await make_analysis(status=AnalysisStatus.PROCESSING)

        await worker.process(ProcessingJob(analysis_id=record.id))

        ai.transcribe.assert_awaited_once_with(b"ID3-fake-audio", "meeting.mp3", "audio/mpeg")

    async def test_url_source_is_not_sent_as_file_name(self, worker, analyses, storage, ai):
        record = Analysis(
            user_id="user-1",
            file_name="https://cdn.example.com/calls/rec.mp3?X-Amz-Signature=abc123",
            tier=PlanTier.PRO.value,
            status=AnalysisStatus.PROCESSING.value,
        )
        record.audio_path = f"{record.id}/url_audio.mp3"
        await storage.put(record.audio_path, b"ID3-remote", "audio/mpeg")
        await analyses.add(record)

        await worker.process(ProcessingJob(analysis_id=record.id))

        ai.transcribe.assert_awaited_once_with(b"ID3-remote", "url_audio.mp3", "audio/mpeg")

    async def test_in_memory_audio_without_stored_copy(self, worker, analyses, ai):
        record = await analyses.add(Analysis(
            user_id="user-1",
            file_name="https://cdn.example.com/c",
            tier=PlanTier.BASIC.value,
            status=AnalysisStatus.PROCESSING.value,
        ))

        await worker.process(ProcessingJob(analysis_id=record.id, audio=b"raw"))

        ai.transcribe.assert_awaited_once_with(b"raw", "audio.mp3", "audio/mpeg")

    async def test_paid_record_is_claimed_first(self, worker, analyses, make_analysis):
        record = await make_analysis(status=AnalysisStatus.PAID)

        assert await worker.process(ProcessingJob(analysis_id=record.id)) == AnalysisStatus.COMPLETED
        assert await analyses.get_status(record.id) == AnalysisStatus.COMPLETED

    async def test_audio_deleted_after_success(self, worker, storage, make_analysis):
        record = await make_analysis(status=AnalysisStatus.PROCESSING)
        await worker.process(ProcessingJob(analysis_id=record.id))
        assert record.audio_path not in storage

    async def test_single_plan_consumed(self, worker, profiles, make_profile, make_analysis):
        await make_profile(plan=PlanTier.SINGLE)
        record = await make_analysis(status=AnalysisStatus.PROCESSING)

        await worker.process(ProcessingJob(analysis_id=record.id))

        assert (await profiles.get_by_id("user-1")).plan == "none"

    async def test_subscription_plan_untouched(self, worker, profiles, make_profile, make_analysis):
        await make_profile(plan=PlanTier.BASIC, used=4)
        record = await make_analysis(status=AnalysisStatus.PROCESSING, tier=PlanTier.BASIC)

        await worker.process(ProcessingJob(analysis_id=record.id))

        profile = await profiles.get_by_id("user-1")
        assert (profile.plan, profile.analyses_used) == ("basic", 4)


class TestRetries:

    async def test_transient_failure_is_retried(self, worker, ai, sleeps, make_analysis):
        ai.transcribe.side_effect = [
            TranscriptionFailed("Transcription failed"),
            TranscriptionFailed("Transcription failed"),
            "third time lucky",
        ]
        record = await make_analysis(status=AnalysisStatus.PROCESSING)

        outcome = await worker.process(ProcessingJob(analysis_id=record.id))

        assert outcome == AnalysisStatus.COMPLETED
        assert ai.transcribe.await_count == 3
        assert sleeps == [2.0, 4.0]

    async def test_exhausted_retries_fail_the_record(
        self, worker, analyses, ai, sleeps, make_analysis
    ):
        ai.analyze.side_effect = AnalysisProviderError("Analysis request failed", model="gpt-4o")
        record = await make_analysis(status=AnalysisStatus.PROCESSING, tier=PlanTier.BASIC)

        outcome = await worker.process(ProcessingJob(analysis_id=record.id))

        assert outcome == AnalysisStatus.ERROR
        assert ai.analyze.await_count == 3
        assert sleeps == [2.0, 4.0]
        stored = await analyses.get_by_id(record.id)
        assert stored.status == "error"
        assert stored.processing_error == "Analysis request failed"
        assert stored.transcript is None
        assert stored.result is None

    async def test_malformed_response_fails_after_retries(self, worker, analyses, ai, make_analysis):
        ai.analyze.side_effect = AnalysisMalformedResponse("AI returned an unreadable analysis")
        record = await make_analysis(status=AnalysisStatus.PROCESSING)

        assert await worker.process(ProcessingJob(analysis_id=record.id)) == AnalysisStatus.ERROR
        assert (await analyses.get_by_id(record.id)).processing_error == (
            "AI returned an unreadable analysis"
        )

    async def test_configuration_error_is_not_retried(
        self, worker, analyses, ai, sleeps, make_analysis
    ):
        ai.transcribe.side_effect = ConfigurationError(
            "Missing OpenAI API key", missing_keys=["OPENAI_API_KEY"]
        )
        record = await make_analysis(status=AnalysisStatus.PROCESSING)

        assert await worker.process(ProcessingJob(analysis_id=record.id)) == AnalysisStatus.ERROR
        assert ai.transcribe.await_count == 1
        assert sleeps == []
        assert (await analyses.get_by_id(record.id)).processing_error == GENERIC_CONFIG_MESSAGE

    async def test_secrets_masked_in_stored_error(self, worker, analyses, ai, make_analysis):
        ai.transcribe.side_effect = TranscriptionFailed("upstream rejected Bearer abc.def.ghi")
        record = await make_analysis(status=AnalysisStatus.PROCESSING)

        await worker.process(ProcessingJob(analysis_id=record.id))

        error = (await analyses.get_by_id(record.id)).processing_error
        assert "abc.def.ghi" not in error

    async def test_unexpected_error_text_is_not_stored(
        self, worker, analyses, ai, sleeps, make_analysis
    ):
        ai.transcribe.side_effect = AttributeError("'list' object has no attribute 'get'")
        record = await make_analysis(status=AnalysisStatus.PROCESSING)

        assert await worker.process(ProcessingJob(analysis_id=record.id)) == AnalysisStatus.ERROR
        assert ai.transcribe.await_count == 1
        assert sleeps == []
        assert (await analyses.get_by_id(record.id)).processing_error == PROCESSING_FAILED_MESSAGE

    async def test_database_failure_is_not_surfaced_to_status_poll(
        self, worker, analyses, state_machine, make_analysis, monkeypatch
    ):
        locked = OperationalError(
            "UPDATE analyses SET transcript=? WHERE analyses.id = ?",
            ("secret transcript", "id"),
            Exception("database is locked"),
        )
        monkeypatch.setattr(analyses, "store_transcript", AsyncMock(side_effect=locked))
        record = await make_analysis(status=AnalysisStatus.PROCESSING)

        assert await worker.process(ProcessingJob(analysis_id=record.id)) == AnalysisStatus.ERROR

        view = await state_machine.get_status_view(record.id)
        assert view.error == PROCESSING_FAILED_MESSAGE
        assert "secret transcript" not in view.error
        assert "SQL" not in view.error

    async def test_failure_still_consumes_single_plan_and_audio(
        self, worker, profiles, storage, ai, make_profile, make_analysis
    ):
        ai.transcribe.side_effect = TranscriptionFailed("Transcription failed")
        await make_profile(plan=PlanTier.SINGLE)
        record = await make_analysis(status=AnalysisStatus.PROCESSING)

        await worker.process(ProcessingJob(analysis_id=record.id))

        assert (await profiles.get_by_id("user-1")).plan == "none"
        assert record.audio_path not in storage


class TestNoOps:

    @pytest.mark.parametrize("status", [AnalysisStatus.COMPLETED, AnalysisStatus.ERROR])
    async def test_terminal_record_is_skipped(self, worker, ai, make_analysis, status):
        record = await make_analysis(status=status)

        assert await worker.process(ProcessingJob(analysis_id=record.id)) is None
        ai.transcribe.assert_not_awaited()

    async def test_pending_record_is_skipped(self, worker, analyses, ai, make_analysis):
        record = await make_analysis(status=AnalysisStatus.PENDING)

        assert await worker.process(ProcessingJob(analysis_id=record.id)) is None
        ai.transcribe.assert_not_awaited()
        assert await analyses.get_status(record.id) == AnalysisStatus.PENDING

    async def test_missing_record(self, worker, ai):
        assert await worker.process(ProcessingJob(analysis_id="gone")) is None
        ai.transcribe.assert_not_awaited()

    async def test_outcome_written_by_another_worker_is_kept(
        self, worker, analyses, ai, make_analysis
    ):
        record = await make_analysis(status=AnalysisStatus.PROCESSING)

        async def finish_elsewhere(transcript, tier):
            await analyses.fail(record.id, "Processing timed out. Please submit the recording again.")
            return {"summary": "late"}

        ai.analyze.side_effect = finish_elsewhere

        assert await worker.process(ProcessingJob(analysis_id=record.id)) is None
        stored = await analyses.get_by_id(record.id)
        assert stored.status == "error"
        assert stored.result is None
