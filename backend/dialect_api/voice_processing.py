"""
Voice Session Processing
========================

Runs one recorded utterance through the pipeline:

1. create the session record (PROCESSING) before anything that can fail
2. store the audio and an estimated duration
3. transcribe
4. score against the expected text (when enabled and both texts exist)
5. ask the AI responder for feedback (optional, never fatal)
6. mark the session COMPLETED

Each stage returns a `StageResult`; the first failing stage turns the session
into a persisted FAILED record and the caller still receives a normal
`VoiceProcessingResult`. Record writes happen in the fixed order
create -> audio -> transcript -> scores -> feedback (optional) -> terminal.

`VoiceProcessingService.submit` schedules the work as an asyncio task and
returns the task immediately. There is no cancellation and no retrying; a
started session always reaches COMPLETED or FAILED.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Set, TypeVar

from pydantic import BaseModel

from .ai_responder import AIService, build_ai_service
from .audio_store import AudioStore, estimate_duration_ms
from .models import utcnow
from .scoring import compute_scores
from .session_records import (
	ProcessingStatus,
	SessionRecordStore,
	SessionType,
	SqlSessionRecordStore,
	VoiceSessionSnapshot,
)
from .transcription import TranscriptionClient, build_transcription_client

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_PAGE_SIZE = 100


class VoiceProcessingOptions(BaseModel):
	session_type: SessionType
	expected_text: Optional[str] = None
	language: Optional[str] = None
	lesson_id: Optional[str] = None
	enable_feedback: bool = True
	enable_scoring: bool = True


class VoiceProcessingResult(BaseModel):
	session_id: Optional[str] = None
	transcribed_text: Optional[str] = None
	confidence_score: Optional[float] = None
	pronunciation_score: Optional[float] = None
	accuracy_score: Optional[float] = None
	fluency_score: Optional[float] = None
	processing_status: ProcessingStatus
	ai_feedback: Optional[Dict[str, Any]] = None
	error_message: Optional[str] = None
	created_at: datetime

	@classmethod
	def from_snapshot(cls, snapshot: VoiceSessionSnapshot) -> "VoiceProcessingResult":
		return cls(
			session_id=snapshot.id,
			transcribed_text=snapshot.transcribed_text,
			confidence_score=snapshot.confidence_score,
			pronunciation_score=snapshot.pronunciation_score,
			accuracy_score=snapshot.accuracy_score,
			fluency_score=snapshot.fluency_score,
			processing_status=snapshot.status,
			ai_feedback=dict(snapshot.ai_feedback) if snapshot.ai_feedback is not None else None,
			error_message=snapshot.error_message,
			created_at=snapshot.created_at,
		)


@dataclass(frozen=True)
class StageResult(Generic[T]):
	value: Optional[T] = None
	kind: Optional[str] = None
	message: Optional[str] = None

	@property
	def ok(self) -> bool:
		return self.kind is None

	@classmethod
	def success(cls, value: T) -> "StageResult[T]":
		return cls(value=value)

	@classmethod
	def failure(cls, kind: str, message: str) -> "StageResult[T]":
		return cls(kind=kind, message=message)


async def run_stage(kind: str, stage: Callable[[], Awaitable[T]]) -> StageResult[T]:
	try:
		return StageResult.success(await stage())
	except Exception as e:
		return StageResult.failure(kind, str(e) or e.__class__.__name__)


class VoiceProcessingService:
	def __init__(
		self,
		record_store: SessionRecordStore,
		audio_store: AudioStore,
		transcription_client: TranscriptionClient,
		ai_service: Optional[AIService] = None,
	) -> None:
		self.record_store = record_store
		self.audio_store = audio_store
		self.transcription_client = transcription_client
		self.ai_service = ai_service
		# Strong references so running sessions are not garbage collected
		self._tasks: Set[asyncio.Task] = set()

	def submit(
		self,
		audio: bytes,
		filename: Optional[str],
		options: VoiceProcessingOptions,
		user_id: str,
	) -> "asyncio.Task[VoiceProcessingResult]":
		task = asyncio.create_task(self.process(audio, filename, options, user_id))
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)
		return task

	async def submit_and_wait(
		self,
		audio: bytes,
		filename: Optional[str],
		options: VoiceProcessingOptions,
		user_id: str,
	) -> VoiceProcessingResult:
		"""Submit a session and wait for its result.

		Cancelling the waiter (a dropped client, a server shutdown) does not
		cancel the session, which still runs to COMPLETED or FAILED.
		"""
		task = self.submit(audio, filename, options, user_id)
		return await asyncio.shield(task)

	async def process(
		self,
		audio: bytes,
		filename: Optional[str],
		options: VoiceProcessingOptions,
		user_id: str,
	) -> VoiceProcessingResult:
		"""Drive one session to a terminal state.

		Args:
			audio: Raw audio payload
			filename: Client-supplied file name, used to name the stored file
			options: Session type, expected text, language and feature flags
			user_id: Identity of the caller who owns the session

		Returns:
			VoiceProcessingResult with status COMPLETED or FAILED. Stage failures
			are reported in the result, not raised.
		"""
		logger.info("Starting voice processing for user %s with session type %s", user_id, options.session_type.value)
		snapshot = VoiceSessionSnapshot(
			user_id=user_id,
			session_type=options.session_type,
			status=ProcessingStatus.PROCESSING,
			lesson_id=options.lesson_id,
			language=options.language,
			expected_text=options.expected_text,
		)
		snapshot = snapshot.with_id(self.record_store.create(snapshot))

		stored = await run_stage("audio_storage", lambda: self._store_audio(snapshot, audio, filename))
		if not stored.ok:
			return self._fail(snapshot, stored)
		snapshot = stored.value

		transcribed = await run_stage("transcription", lambda: self._transcribe(snapshot, audio, filename))
		if not transcribed.ok:
			return self._fail(snapshot, transcribed)
		snapshot = transcribed.value

		scored = await run_stage("scoring", lambda: self._score(snapshot, options.enable_scoring))
		if not scored.ok:
			return self._fail(snapshot, scored)
		snapshot = scored.value

		if options.enable_feedback:
			reviewed = await run_stage("persistence", lambda: self._add_feedback(snapshot))
			if not reviewed.ok:
				return self._fail(snapshot, reviewed)
			snapshot = reviewed.value

		finished = await run_stage("persistence", lambda: self._complete(snapshot))
		if not finished.ok:
			return self._fail(snapshot, finished)
		snapshot = finished.value

		logger.info("Voice processing completed successfully for session %s", snapshot.id)
		return VoiceProcessingResult.from_snapshot(snapshot)

	def _persist(self, snapshot: VoiceSessionSnapshot) -> VoiceSessionSnapshot:
		self.record_store.update(snapshot.id, snapshot)
		return snapshot

	async def _store_audio(self, snapshot: VoiceSessionSnapshot, audio: bytes, filename: Optional[str]) -> VoiceSessionSnapshot:
		locator = self.audio_store.save(audio, filename)
		return self._persist(snapshot.with_audio(locator, estimate_duration_ms(len(audio))))

	async def _transcribe(self, snapshot: VoiceSessionSnapshot, audio: bytes, filename: Optional[str]) -> VoiceSessionSnapshot:
		text = await self.transcription_client.transcribe(audio, snapshot.language, filename or "audio.webm")
		return self._persist(snapshot.with_transcript(text))

	async def _score(self, snapshot: VoiceSessionSnapshot, enable_scoring: bool) -> VoiceSessionSnapshot:
		if enable_scoring and snapshot.transcribed_text is not None and snapshot.expected_text is not None:
			scores = compute_scores(snapshot.transcribed_text, snapshot.expected_text, snapshot.duration_ms)
			snapshot = snapshot.with_scores(scores)
		return self._persist(snapshot)

	async def _add_feedback(self, snapshot: VoiceSessionSnapshot) -> VoiceSessionSnapshot:
		if self.ai_service is None:
			logger.warning("AI feedback requested for session %s but no AI service is configured", snapshot.id)
			return snapshot
		try:
			feedback = await self.ai_service.generate_voice_feedback(
				snapshot.transcribed_text,
				snapshot.expected_text,
				snapshot.confidence_score,
			)
		except Exception as e:
			logger.warning("Failed to generate AI feedback for session %s: %s", snapshot.id, e)
			return snapshot
		return self._persist(snapshot.with_feedback({
			"feedback": feedback,
			"generated_at": utcnow().isoformat(),
		}))

	async def _complete(self, snapshot: VoiceSessionSnapshot) -> VoiceSessionSnapshot:
		return self._persist(snapshot.complete())

	def _fail(self, snapshot: VoiceSessionSnapshot, failure: StageResult) -> VoiceProcessingResult:
		logger.error(
			"Error processing voice for user %s (session %s, %s): %s",
			snapshot.user_id, snapshot.id, failure.kind, failure.message,
		)
		failed = snapshot.fail(failure.message)
		try:
			self._persist(failed)
		except Exception:
			logger.exception("Could not record failure of voice session %s", snapshot.id)
		return VoiceProcessingResult.from_snapshot(failed)

	def get_session(self, session_id: str, user_id: str) -> Optional[VoiceProcessingResult]:
		snapshot = self.record_store.get(session_id)
		if snapshot is None or snapshot.user_id != user_id:
			return None
		return VoiceProcessingResult.from_snapshot(snapshot)

	def list_sessions(
		self,
		user_id: str,
		page: int = 0,
		size: int = 20,
		status: Optional[ProcessingStatus] = None,
	) -> List[VoiceProcessingResult]:
		size = max(1, min(size, MAX_PAGE_SIZE))
		page = max(0, page)
		snapshots = self.record_store.list_for_user(user_id, offset=page * size, limit=size, status=status)
		return [VoiceProcessingResult.from_snapshot(s) for s in snapshots]

	async def aclose(self) -> None:
		# Sessions in flight still need their clients
		if self._tasks:
			await asyncio.gather(*self._tasks, return_exceptions=True)
		await self.transcription_client.aclose()
		if self.ai_service is not None:
			await self.ai_service.aclose()


def build_voice_service() -> VoiceProcessingService:
	try:
		ai_service: Optional[AIService] = build_ai_service()
	except ValueError as e:
		# Sessions still run without feedback when no chat model is configured
		logger.warning("AI feedback disabled: %s", e)
		ai_service = None
	return VoiceProcessingService(
		record_store=SqlSessionRecordStore(),
		audio_store=AudioStore(),
		transcription_client=build_transcription_client(),
		ai_service=ai_service,
	)
