from __future__ import annotations
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from google.cloud import speech_v1p1beta1 as speech

from .settings import settings

logger = logging.getLogger(__name__)


class TranscriptionFailure(Exception):
	pass


def _primary_subtag(language: Optional[str]) -> Optional[str]:
	# Whisper expects ISO-639-1 ("fr"), callers send BCP-47 tags ("fr-FR")
	if not language:
		return None
	return language.replace("_", "-").split("-")[0].lower() or None


class TranscriptionClient(ABC):
	"""Speech-to-text boundary. One attempt per call; failures surface as TranscriptionFailure."""

	@abstractmethod
	async def transcribe(self, audio: bytes, language_hint: Optional[str] = None, filename: str = "audio.webm") -> str:
		...

	async def aclose(self) -> None:
		return None


class WhisperTranscriptionClient(TranscriptionClient):
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		client: Optional[httpx.AsyncClient] = None,
	) -> None:
		self.api_key = api_key or settings.openai_api_key
		if not self.api_key:
			raise ValueError("OPENAI_API_KEY is not configured")
		self.base_url = (base_url or settings.openai_base_url).rstrip("/")
		self.model = model or settings.openai_transcription_model
		self._client = client or httpx.AsyncClient(timeout=settings.ai_timeout_seconds)

	async def transcribe(self, audio: bytes, language_hint: Optional[str] = None, filename: str = "audio.webm") -> str:
		data: Dict[str, Any] = {"model": self.model}
		language = _primary_subtag(language_hint)
		if language:
			data["language"] = language
		try:
			r = await self._client.post(
				f"{self.base_url}/audio/transcriptions",
				headers={"Authorization": f"Bearer {self.api_key}"},
				data=data,
				files={"file": (filename, audio)},
			)
			r.raise_for_status()
			text = r.json()["text"]
		except Exception as e:
			raise TranscriptionFailure(f"Failed to transcribe audio: {e}") from e
		logger.debug("Audio transcribed successfully: %s", text)
		return text

	async def aclose(self) -> None:
		await self._client.aclose()


class GoogleSpeechTranscriptionClient(TranscriptionClient):
	"""Cloud Speech-to-Text `recognize`, run in a worker thread since the client blocks."""

	def __init__(self, client: Any = None, *, default_language: Optional[str] = None) -> None:
		self._client = client
		self.default_language = default_language or settings.speech_default_language

	def _speech_client(self) -> Any:
		if self._client is None:
			self._client = speech.SpeechClient()
		return self._client

	def _recognize(self, audio: bytes, language_code: str) -> str:
		config = speech.RecognitionConfig(
			language_code=language_code,
			model="default",
			enable_automatic_punctuation=True,
		)
		response = self._speech_client().recognize(config=config, audio=speech.RecognitionAudio(content=audio))
		parts = [r.alternatives[0].transcript.strip() for r in response.results if r.alternatives]
		return " ".join(p for p in parts if p)

	async def transcribe(self, audio: bytes, language_hint: Optional[str] = None, filename: str = "audio.webm") -> str:
		language_code = language_hint or self.default_language
		try:
			text = await asyncio.to_thread(self._recognize, audio, language_code)
		except Exception as e:
			raise TranscriptionFailure(f"Failed to transcribe audio: {e}") from e
		logger.debug("Audio transcribed successfully: %s", text)
		return text


def build_transcription_client(provider: Optional[str] = None) -> TranscriptionClient:
	provider = (provider or settings.transcription_provider).lower()
	if provider == "openai":
		return WhisperTranscriptionClient()
	if provider == "google":
		return GoogleSpeechTranscriptionClient()
	raise ValueError(f"Unknown transcription provider: {provider}")
