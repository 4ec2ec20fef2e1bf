"""
Analysis Routes

Submission (file upload or remote URL), status polling, payment
confirmation, history and deletion.
"""

import logging

from fastapi import APIRouter, File, UploadFile, status

from app.api.dependencies import (
    ContainerDep,
    CurrentUserId,
    RemoteAudioDep,
    StateMachineDep,
    UsageReportsDep,
)
from app.domain.analysis import (
    AnalysisIdRequest,
    AnalysisListResponse,
    AnalysisStatusResponse,
    ConfirmPaymentResponse,
    SubmitResponse,
    SubmitUrlRequest,
)
from app.infrastructure.exceptions import ValidationError
from app.services.analysis_lifecycle import SubmittedAudio


logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_AUDIO_TYPES = frozenset({
    "audio/mpeg",
    "audio/wav",
    "audio/mp4",
    "audio/webm",
    "audio/x-m4a",
    "audio/mp3",
    "audio/ogg",
    "audio/flac",
})


@router.post("/analyses", response_model=SubmitResponse)
async def submit_upload(
    user_id: CurrentUserId,
    container: ContainerDep,
    state_machine: StateMachineDep,
    file: UploadFile = File(...),
):
    """
    Submit an uploaded recording.

    Pay-per-use callers get ``requiresPayment: true`` and must check out;
    subscribers start processing immediately.
    """
    content_type = (file.content_type or "").split(";")[0].strip()
    if content_type not in ALLOWED_AUDIO_TYPES:
        raise ValidationError("Invalid file type. Please upload an audio file.")

    max_bytes = container.settings.max_upload_bytes
    data = await file.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ValidationError(
            f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB."
        )
    if not data:
        raise ValidationError("No file provided")

    return await state_machine.submit(
        user_id,
        SubmittedAudio(
            data=data,
            file_name=file.filename or "audio",
            content_type=content_type,
        ),
    )


@router.post("/analyses/url", response_model=SubmitResponse)
async def submit_url(
    request: SubmitUrlRequest,
    user_id: CurrentUserId,
    state_machine: StateMachineDep,
    fetcher: RemoteAudioDep,
):
    """Submit a recording by direct HTTPS link (fetched server-side)."""
    # Checked again by submit after the download
    await state_machine.ensure_quota(user_id)

    audio = await fetcher.fetch(request.url)
    return await state_machine.submit(user_id, audio)


@router.get("/analyses", response_model=AnalysisListResponse)
async def list_analyses(user_id: CurrentUserId, reports: UsageReportsDep):
    """The caller's latest 50 analyses."""
    return await reports.recent_analyses(user_id)


@router.get("/analyses/{analysis_id}", response_model=AnalysisStatusResponse)
async def get_analysis_status(analysis_id: str, state_machine: StateMachineDep):
    """
    Public status poll by id.

    Always returns the same shape; ``error`` is sanitized.
    """
    return await state_machine.get_status_view(analysis_id)


@router.post("/analyses/confirm-payment", response_model=ConfirmPaymentResponse)
async def confirm_payment(
    request: AnalysisIdRequest,
    user_id: CurrentUserId,
    state_machine: StateMachineDep,
):
    """
    Client fallback when the payment webhook has not arrived yet.

    402 while the gateway does not report the transaction as paid.
    """
    current = await state_machine.confirm_payment(user_id, request.analysisId)
    return ConfirmPaymentResponse(status=current)


@router.delete("/analyses/{analysis_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_analysis(
    analysis_id: str,
    user_id: CurrentUserId,
    state_machine: StateMachineDep,
):
    await state_machine.delete(user_id, analysis_id)
