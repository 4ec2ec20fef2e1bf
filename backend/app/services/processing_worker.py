"""
Processing Worker

Runs transcription and structured analysis for one analysis record and
writes the terminal outcome back. Invoked by the dispatcher; callers only
ever observe the outcome by polling status.
"""

import asyncio
import logging
import posixpath
from typing import Any, Awaitable, Callable, Optional, TypeVar

from app.domain.analysis import AnalysisStatus
from app.domain.billing import PlanTier
from app.infrastructure.ai.openai_service import OpenAIService
from app.infrastructure.db.models import Analysis
from app.infrastructure.db.repositories import (
    AnalysisRepository,
    UserProfileRepository,
)
from app.infrastructure.exceptions import (
    ConfigurationError,
    ContractEarError,
    PROCESSING_FAILED_MESSAGE,
    StorageError,
    redact_secrets,
)
from app.infrastructure.storage import AudioStorage
from app.services.dispatcher import ProcessingJob


logger = logging.getLogger(__name__)

T = TypeVar("T")


def _upload_name(analysis: Analysis) -> str:
    """File name sent to the transcription provider; never the source URL."""
    if analysis.audio_path:
        return posixpath.basename(analysis.audio_path)
    return "audio.mp3"


class ProcessingWorker:
    """
    Transcribe, analyze, finish.

    Terminal writes are conditional on the record still being
    ``processing``, so a duplicate invocation after a crash-and-requeue
    cannot overwrite an outcome.
    """

    def __init__(
        self,
        analyses: AnalysisRepository,
        profiles: UserProfileRepository,
        ai: OpenAIService,
        storage: AudioStorage,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._analyses = analyses
        self._profiles = profiles
        self._ai = ai
        self._storage = storage
        self._max_attempts = max(1, max_attempts)
        self._base_delay = base_delay
        self._sleep = sleep

    async def process(self, job: ProcessingJob) -> Optional[AnalysisStatus]:
        """
        Process one analysis.

        Returns:
            The terminal status written, or None if there was nothing to do
        """
        analysis = await self._analyses.get_by_id(job.analysis_id)
        if analysis is None:
            logger.warning(f"Analysis {job.analysis_id} vanished before processing")
            return None

        status = analysis.status_enum
        if status.is_terminal:
            logger.info(f"Analysis {analysis.id} already {status.value}, skipping")
            return None

        if status == AnalysisStatus.PAID:
            await self._analyses.transition(
                analysis.id, AnalysisStatus.PAID, AnalysisStatus.PROCESSING
            )
            status = await self._analyses.get_status(analysis.id)

        if status != AnalysisStatus.PROCESSING:
            logger.warning(
                f"Analysis {analysis.id} is {status.value if status else 'missing'}, "
                "not processing it"
            )
            return None

        try:
            return await self._run(analysis, job)
        finally:
            job.audio = None
            if analysis.audio_path:
                await self._discard_audio(analysis.audio_path)
            if analysis.tier_enum == PlanTier.SINGLE:
                await self._profiles.consume_single(analysis.user_id)

    async def _run(self, analysis: Analysis, job: ProcessingJob) -> Optional[AnalysisStatus]:
        tier = analysis.tier_enum

        try:
            audio = job.audio
            content_type = job.content_type
            if audio is None:
                stored = await self._storage.get(analysis.audio_path or "")
                audio, content_type = stored.data, stored.content_type

            transcript = await self._with_retry(
                "transcription",
                lambda: self._ai.transcribe(
                    audio, _upload_name(analysis), content_type or "audio/mpeg"
                ),
            )
            del audio

            await self._analyses.store_transcript(analysis.id, transcript)

            result = await self._with_retry(
                "analysis",
                lambda: self._ai.analyze(transcript, tier),
            )
        except ContractEarError as e:
            message = redact_secrets(e.message)
            logger.error(
                f"Analysis {analysis.id} failed ({e.__class__.__name__}): {message}"
            )
        except Exception:
            logger.exception(f"Analysis {analysis.id} failed unexpectedly")
            message = PROCESSING_FAILED_MESSAGE
        else:
            if await self._analyses.complete(analysis.id, result):
                logger.info(f"Analysis {analysis.id} completed")
                return AnalysisStatus.COMPLETED
            return None

        if await self._analyses.fail(analysis.id, message):
            return AnalysisStatus.ERROR
        return None

    async def _with_retry(self, label: str, call: Callable[[], Awaitable[T]]) -> T:
        """Up to ``max_attempts`` tries, sleeping ``attempt * base_delay`` in between."""
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await call()
            except ConfigurationError:
                raise
            except ContractEarError as e:
                if attempt == self._max_attempts:
                    raise
                delay = attempt * self._base_delay
                logger.warning(
                    f"{label} attempt {attempt}/{self._max_attempts} failed: "
                    f"{redact_secrets(e.message)}; retrying in {delay:.0f}s"
                )
                await self._sleep(delay)
        raise RuntimeError("unreachable")

    async def _discard_audio(self, path: str) -> None:
        try:
            await self._storage.delete(path)
        except StorageError as e:
            logger.warning(f"Could not delete stored audio {path}: {e.message}")
