"""
Voice Session Records
=====================

Immutable snapshots of a voice session and the durable store they are folded
into.

A session moves through ``PENDING -> PROCESSING -> COMPLETED | FAILED`` and
never returns to an earlier state. Each orchestrator stage produces a new
snapshot via the ``with_*`` / ``complete`` / ``fail`` helpers, which refuse
moves that would break the session invariants:

- status transitions are one-directional, terminal states are final
- ``error_message`` is set exactly when the status is FAILED
- the four scores are set together
- the audio locator is recorded before a transcript
"""

from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from .db import SessionLocal
from .models import VoiceSessionRecord, utcnow
from .scoring import SessionScores


class SessionType(str, Enum):
	PRONUNCIATION = "PRONUNCIATION"
	CONVERSATION = "CONVERSATION"
	DICTATION = "DICTATION"
	FREE_SPEECH = "FREE_SPEECH"


class ProcessingStatus(str, Enum):
	PENDING = "PENDING"
	PROCESSING = "PROCESSING"
	COMPLETED = "COMPLETED"
	FAILED = "FAILED"

	@property
	def is_terminal(self) -> bool:
		return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)


_STATUS_RANK = {
	ProcessingStatus.PENDING: 0,
	ProcessingStatus.PROCESSING: 1,
	ProcessingStatus.COMPLETED: 2,
	ProcessingStatus.FAILED: 2,
}


class InvalidStatusTransition(ValueError):
	pass


def check_transition(current: ProcessingStatus, target: ProcessingStatus) -> None:
	"""Raise InvalidStatusTransition unless ``current -> target`` moves strictly forward."""
	if current.is_terminal:
		raise InvalidStatusTransition(f"Session is already {current.value}")
	if _STATUS_RANK[target] <= _STATUS_RANK[current]:
		raise InvalidStatusTransition(f"Cannot move session from {current.value} to {target.value}")


@dataclass(frozen=True)
class VoiceSessionSnapshot:
	user_id: str
	session_type: SessionType
	status: ProcessingStatus = ProcessingStatus.PENDING
	id: Optional[str] = None
	lesson_id: Optional[str] = None
	language: Optional[str] = None
	expected_text: Optional[str] = None
	audio_locator: Optional[str] = None
	duration_ms: Optional[int] = None
	transcribed_text: Optional[str] = None
	scores: Optional[SessionScores] = None
	ai_feedback: Optional[Mapping[str, Any]] = None
	error_message: Optional[str] = None
	created_at: datetime = field(default_factory=utcnow)

	def __post_init__(self) -> None:
		if (self.status == ProcessingStatus.FAILED) != (self.error_message is not None):
			raise ValueError("error_message must be set if and only if the session FAILED")

	@property
	def confidence_score(self) -> Optional[float]:
		return self.scores.confidence if self.scores else None

	@property
	def accuracy_score(self) -> Optional[float]:
		return self.scores.accuracy if self.scores else None

	@property
	def pronunciation_score(self) -> Optional[float]:
		return self.scores.pronunciation if self.scores else None

	@property
	def fluency_score(self) -> Optional[float]:
		return self.scores.fluency if self.scores else None

	def _ensure_open(self) -> None:
		if self.status.is_terminal:
			raise InvalidStatusTransition(f"Session {self.id} is already {self.status.value}")

	def with_id(self, session_id: str) -> "VoiceSessionSnapshot":
		return replace(self, id=session_id)

	def with_audio(self, locator: str, duration_ms: Optional[int]) -> "VoiceSessionSnapshot":
		self._ensure_open()
		return replace(self, audio_locator=locator, duration_ms=duration_ms)

	def with_transcript(self, text: str) -> "VoiceSessionSnapshot":
		self._ensure_open()
		if self.audio_locator is None:
			raise ValueError("Audio must be stored before a transcript is recorded")
		return replace(self, transcribed_text=text)

	def with_scores(self, scores: SessionScores) -> "VoiceSessionSnapshot":
		self._ensure_open()
		return replace(self, scores=scores)

	def with_feedback(self, feedback: Mapping[str, Any]) -> "VoiceSessionSnapshot":
		self._ensure_open()
		return replace(self, ai_feedback=dict(feedback))

	def complete(self) -> "VoiceSessionSnapshot":
		check_transition(self.status, ProcessingStatus.COMPLETED)
		return replace(self, status=ProcessingStatus.COMPLETED)

	def fail(self, message: Optional[str]) -> "VoiceSessionSnapshot":
		check_transition(self.status, ProcessingStatus.FAILED)
		return replace(self, status=ProcessingStatus.FAILED, error_message=message or "Voice processing failed")


class SessionRecordStore(ABC):
	"""Durable store of voice sessions. Writes must be durable before returning."""

	@abstractmethod
	def create(self, snapshot: VoiceSessionSnapshot) -> str:
		...

	@abstractmethod
	def update(self, session_id: str, snapshot: VoiceSessionSnapshot) -> None:
		...

	@abstractmethod
	def get(self, session_id: str) -> Optional[VoiceSessionSnapshot]:
		...

	@abstractmethod
	def list_for_user(
		self,
		user_id: str,
		*,
		offset: int = 0,
		limit: int = 20,
		status: Optional[ProcessingStatus] = None,
	) -> List[VoiceSessionSnapshot]:
		...


def _apply(row: VoiceSessionRecord, snapshot: VoiceSessionSnapshot) -> None:
	row.user_id = snapshot.user_id
	row.lesson_id = snapshot.lesson_id
	row.session_type = snapshot.session_type.value
	row.audio_file_path = snapshot.audio_locator
	row.transcribed_text = snapshot.transcribed_text
	row.expected_text = snapshot.expected_text
	row.confidence_score = snapshot.confidence_score
	row.accuracy_score = snapshot.accuracy_score
	row.pronunciation_score = snapshot.pronunciation_score
	row.fluency_score = snapshot.fluency_score
	row.processing_status = snapshot.status.value
	row.language = snapshot.language
	row.duration_ms = snapshot.duration_ms
	row.ai_feedback = dict(snapshot.ai_feedback) if snapshot.ai_feedback is not None else None
	row.error_message = snapshot.error_message


def _to_snapshot(row: VoiceSessionRecord) -> VoiceSessionSnapshot:
	score_values = (row.confidence_score, row.accuracy_score, row.pronunciation_score, row.fluency_score)
	scores = None
	if all(v is not None for v in score_values):
		scores = SessionScores(
			confidence=row.confidence_score,
			accuracy=row.accuracy_score,
			pronunciation=row.pronunciation_score,
			fluency=row.fluency_score,
		)
	return VoiceSessionSnapshot(
		id=row.id,
		user_id=row.user_id,
		lesson_id=row.lesson_id,
		session_type=SessionType(row.session_type),
		status=ProcessingStatus(row.processing_status),
		language=row.language,
		expected_text=row.expected_text,
		audio_locator=row.audio_file_path,
		duration_ms=row.duration_ms,
		transcribed_text=row.transcribed_text,
		scores=scores,
		ai_feedback=row.ai_feedback,
		error_message=row.error_message,
		created_at=row.created_at,
	)


class SqlSessionRecordStore(SessionRecordStore):
	"""SQLAlchemy-backed store. Writes to one session id are serialized; different ids are not."""

	def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
		self._session_factory = session_factory
		self._locks: Dict[str, threading.Lock] = {}
		self._locks_guard = threading.Lock()

	def _lock_for(self, session_id: str) -> threading.Lock:
		with self._locks_guard:
			return self._locks.setdefault(session_id, threading.Lock())

	def create(self, snapshot: VoiceSessionSnapshot) -> str:
		session_id = snapshot.id or uuid.uuid4().hex
		row = VoiceSessionRecord(id=session_id, created_at=snapshot.created_at)
		_apply(row, snapshot)
		with self._session_factory() as db:
			db.add(row)
			db.commit()
		return session_id

	def update(self, session_id: str, snapshot: VoiceSessionSnapshot) -> None:
		with self._lock_for(session_id):
			with self._session_factory() as db:
				row = db.get(VoiceSessionRecord, session_id)
				if row is None:
					raise KeyError(f"Unknown voice session: {session_id}")
				current = ProcessingStatus(row.processing_status)
				if current != snapshot.status or current.is_terminal:
					check_transition(current, snapshot.status)
				_apply(row, snapshot)
				db.commit()
		if snapshot.status.is_terminal:
			with self._locks_guard:
				self._locks.pop(session_id, None)

	def get(self, session_id: str) -> Optional[VoiceSessionSnapshot]:
		with self._session_factory() as db:
			row = db.get(VoiceSessionRecord, session_id)
			return _to_snapshot(row) if row is not None else None

	def list_for_user(
		self,
		user_id: str,
		*,
		offset: int = 0,
		limit: int = 20,
		status: Optional[ProcessingStatus] = None,
	) -> List[VoiceSessionSnapshot]:
		with self._session_factory() as db:
			query = db.query(VoiceSessionRecord).filter(VoiceSessionRecord.user_id == user_id)
			if status is not None:
				query = query.filter(VoiceSessionRecord.processing_status == status.value)
			rows = (
				query.order_by(VoiceSessionRecord.created_at.desc(), VoiceSessionRecord.id)
				.offset(offset)
				.limit(limit)
				.all()
			)
			return [_to_snapshot(r) for r in rows]
