"""Shared test fixtures for the voice-session backend."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dialect_api.ai_responder import AIResponder, AIService
from dialect_api.audio_store import AudioStore
from dialect_api.db import Base
from dialect_api import models  # noqa: F401
from dialect_api.voice_processing import VoiceProcessingService

from .fakes import FakeChatModel, FakeTranscriptionClient, RecordingStore


@pytest.fixture
def session_factory():
	engine = create_engine(
		"sqlite://",
		connect_args={"check_same_thread": False},
		poolclass=StaticPool,
		future=True,
	)
	Base.metadata.create_all(bind=engine)
	yield sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
	engine.dispose()


@pytest.fixture
def record_store(session_factory):
	return RecordingStore(session_factory)


@pytest.fixture
def audio_store(tmp_path):
	return AudioStore(str(tmp_path / "uploads" / "audio"))


@pytest.fixture
def primary_model():
	return FakeChatModel("primary", reply="Très bien ! Watch the final 'r'.")


@pytest.fixture
def fallback_model():
	return FakeChatModel("fallback", reply="Good effort from the fallback.")


@pytest.fixture
def transcriber():
	return FakeTranscriptionClient(text="bonjour")


@pytest.fixture
def make_service(record_store, audio_store, transcriber, primary_model, fallback_model):
	"""Build a VoiceProcessingService around the fakes; any collaborator can be swapped."""

	def _make(transcription_client=None, primary=None, fallback=None, with_ai=True, store=None):
		ai_service = None
		if with_ai:
			ai_service = AIService(AIResponder(primary or primary_model, fallback or fallback_model))
		return VoiceProcessingService(
			record_store=store or record_store,
			audio_store=audio_store,
			transcription_client=transcription_client or transcriber,
			ai_service=ai_service,
		)

	return _make
