"""
OpenAI AI Service for ContractEar

Uses the official openai SDK (AsyncOpenAI) for:
- Speech-to-text transcription (whisper, verbose_json with segments)
- Structured agreement analysis (chat completions returning raw JSON)

Each method performs exactly one attempt (``max_retries=0``); the
processing worker owns the retry policy.
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx
import openai
from openai import AsyncOpenAI

from app.config.settings import Settings
from app.domain.billing import PlanTier, get_tier_config
from app.infrastructure.exceptions import (
    AnalysisMalformedResponse,
    AnalysisProviderError,
    ConfigurationError,
    TranscriptionFailed,
)


logger = logging.getLogger(__name__)


def _describe(error: openai.APIError) -> str:
    if isinstance(error, openai.APIStatusError):
        return f"status {error.status_code}"
    return error.__class__.__name__


class OpenAIService:
    """
    Transcription and analysis provider.

    The SDK client is created on first use so a missing API key surfaces
    as a ConfigurationError on the analysis, not at startup. Tests pass an
    ``httpx.AsyncClient`` with a mock transport as ``http_client``.
    """

    TEMPERATURE = 0.3

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings
        self._transcription_model = settings.transcription_model
        self._http_client = http_client
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        if not self._settings.openai_api_key:
            raise ConfigurationError(
                "Missing OpenAI API key",
                missing_keys=["OPENAI_API_KEY"],
            )
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._settings.openai_api_key,
                base_url=self._settings.openai_base_url,
                max_retries=0,
                timeout=httpx.Timeout(300.0, connect=10.0),
                http_client=self._http_client,
            )
        return self._client

    async def transcribe(
        self,
        audio: bytes,
        file_name: str,
        content_type: str,
    ) -> str:
        """
        Transcribe an audio buffer.

        Returns:
            Transcript text (may be empty for silent audio)

        Raises:
            TranscriptionFailed on transport or provider errors
        """
        client = self._get_client()
        try:
            transcription = await client.audio.transcriptions.create(
                model=self._transcription_model,
                file=(file_name, audio, content_type),
                response_format="verbose_json",
                timestamp_granularities=["segment"],
            )
        except openai.APIError as e:
            logger.error(f"Transcription API error: {_describe(e)}")
            raise TranscriptionFailed(
                f"Transcription failed ({_describe(e)})",
                model=self._transcription_model,
                original_error=e,
            ) from e

        if isinstance(transcription, str):
            return transcription
        return getattr(transcription, "text", None) or ""

    async def analyze(self, transcript: str, tier: PlanTier) -> Dict[str, Any]:
        """
        Run the tier's analysis prompt over a transcript.

        Returns:
            Parsed analysis document

        Raises:
            AnalysisProviderError on transport or provider errors
            AnalysisMalformedResponse if the reply is empty or not a JSON object
        """
        config = get_tier_config(tier)
        client = self._get_client()

        try:
            completion = await client.chat.completions.create(
                model=config.model,
                messages=[
                    {"role": "system", "content": config.system_prompt},
                    {"role": "user", "content": f"Analyze this transcript:\n\n{transcript}"},
                ],
                temperature=self.TEMPERATURE,
                max_tokens=config.max_tokens,
            )
        except openai.APIError as e:
            logger.error(f"Analysis API error: {_describe(e)}")
            raise AnalysisProviderError(
                f"Analysis failed ({_describe(e)})",
                model=config.model,
                original_error=e,
            ) from e

        try:
            content = completion.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise AnalysisMalformedResponse(
                "Unexpected response shape from analysis model",
                model=config.model,
                original_error=e,
            ) from e

        if not content:
            raise AnalysisMalformedResponse(
                f"No response from {config.model}", model=config.model
            )

        return self._parse_json_response(content, config.model)

    def _parse_json_response(self, response_text: str, model: str) -> Dict[str, Any]:
        """Parse JSON from response, handling markdown code blocks."""
        text = response_text.strip()

        # Remove markdown code blocks
        if text.startswith("```json"):
            text = text[7:]
        elif text.startswith("```"):
            text = text[3:]

        if text.endswith("```"):
            text = text[:-3]

        try:
            parsed = json.loads(text.strip())
        except json.JSONDecodeError as e:
            raise AnalysisMalformedResponse(
                "Analysis response was not valid JSON", model=model, original_error=e
            ) from e

        if not isinstance(parsed, dict):
            raise AnalysisMalformedResponse(
                "Analysis response was not a JSON object", model=model
            )
        return parsed

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
        elif self._http_client is not None:
            await self._http_client.aclose()
