from __future__ import annotations
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Integer, Float, Text, JSON, Index
from .db import Base


def utcnow() -> datetime:
	# Naive UTC, matching what SQLite hands back
	return datetime.now(timezone.utc).replace(tzinfo=None)


class VoiceSessionRecord(Base):
	__tablename__ = "voice_sessions"
	id = Column(String(64), primary_key=True, index=True)
	# Users and lessons live elsewhere; these are plain references
	user_id = Column(String(128), nullable=False)
	lesson_id = Column(String(64), nullable=True)
	session_type = Column(String(32), nullable=False)
	audio_file_path = Column(String(512), nullable=True)
	transcribed_text = Column(Text, nullable=True)
	expected_text = Column(Text, nullable=True)
	confidence_score = Column(Float, nullable=True)
	pronunciation_score = Column(Float, nullable=True)
	accuracy_score = Column(Float, nullable=True)
	fluency_score = Column(Float, nullable=True)
	processing_status = Column(String(16), default="PENDING", nullable=False)
	language = Column(String(16), nullable=True)
	duration_ms = Column(Integer, nullable=True)
	ai_feedback = Column(JSON, nullable=True)
	error_message = Column(Text, nullable=True)
	created_at = Column(DateTime, default=utcnow, nullable=False)
	updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=True)

	__table_args__ = (
		Index("idx_voice_session_user_created", "user_id", "created_at"),
		Index("idx_voice_session_status", "processing_status"),
	)
