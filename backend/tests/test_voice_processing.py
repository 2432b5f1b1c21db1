"""Pipeline tests for VoiceProcessingService, run against the SQL store and in-process fakes."""
import asyncio

import pytest

from dialect_api.audio_store import AudioStore
from dialect_api.chat_models import ChatModelError
from dialect_api.session_records import ProcessingStatus, SessionType
from dialect_api.voice_processing import (
	StageResult,
	VoiceProcessingOptions,
	VoiceProcessingService,
	run_stage,
)

from .fakes import FakeChatModel, FakeTranscriptionClient

AUDIO = b"\x01" * 32000


def _options(**kwargs) -> VoiceProcessingOptions:
	values = {"session_type": SessionType.PRONUNCIATION, "expected_text": "bonjour", "language": "fr-FR"}
	values.update(kwargs)
	return VoiceProcessingOptions(**values)


def _statuses(record_store):
	return [(op, snapshot.status) for op, snapshot in record_store.writes]


def _assert_no_scores(result):
	assert result.confidence_score is None
	assert result.accuracy_score is None
	assert result.pronunciation_score is None
	assert result.fluency_score is None


class TestRunStage:
	@pytest.mark.asyncio
	async def test_success(self):
		async def stage():
			return 42

		result = await run_stage("scoring", stage)
		assert result.ok and result.value == 42

	@pytest.mark.asyncio
	async def test_failure_keeps_kind_and_message(self):
		async def stage():
			raise RuntimeError("disk full")

		result = await run_stage("audio_storage", stage)
		assert not result.ok
		assert result.kind == "audio_storage"
		assert result.message == "disk full"

	@pytest.mark.asyncio
	async def test_exception_without_message(self):
		async def stage():
			raise KeyError()

		result = await run_stage("persistence", stage)
		assert result == StageResult.failure("persistence", "KeyError")


class TestEndToEnd:
	@pytest.mark.asyncio
	async def test_exact_match_completes(self, make_service, record_store, primary_model):
		service = make_service()
		result = await service.process(AUDIO, "clip.webm", _options(), "user-1")

		assert result.processing_status == ProcessingStatus.COMPLETED
		assert result.session_id
		assert result.transcribed_text == "bonjour"
		assert result.accuracy_score == 1.0
		assert result.confidence_score == pytest.approx(0.55)
		assert result.pronunciation_score == pytest.approx(0.775)
		# 1 word over 2000 ms is 30 wpm
		assert result.fluency_score == 0.6
		assert result.error_message is None
		assert result.ai_feedback["feedback"] == primary_model.reply
		assert "generated_at" in result.ai_feedback
		assert "0.55" in primary_model.prompts[0]

		stored = record_store.get(result.session_id)
		assert stored.status == ProcessingStatus.COMPLETED
		assert stored.duration_ms == 2000
		assert stored.audio_locator.endswith("_clip.webm")

	@pytest.mark.asyncio
	async def test_transcription_failure_fails_session(self, make_service, record_store):
		service = make_service(transcription_client=FakeTranscriptionClient(error=TimeoutError("upstream timeout")))
		result = await service.process(AUDIO, "clip.webm", _options(), "user-1")

		assert result.processing_status == ProcessingStatus.FAILED
		assert result.error_message.startswith("Failed to transcribe audio")
		assert result.transcribed_text is None
		_assert_no_scores(result)
		assert result.ai_feedback is None

		stored = record_store.get(result.session_id)
		assert stored.status == ProcessingStatus.FAILED
		assert stored.error_message == result.error_message
		assert _statuses(record_store) == [
			("create", ProcessingStatus.PROCESSING),
			("update", ProcessingStatus.PROCESSING),
			("update", ProcessingStatus.FAILED),
		]

	@pytest.mark.asyncio
	async def test_fallback_supplies_feedback(self, make_service, primary_model, fallback_model):
		primary_model.error = ChatModelError("primary unavailable")
		service = make_service()
		result = await service.process(AUDIO, "clip.webm", _options(), "user-1")

		assert result.processing_status == ProcessingStatus.COMPLETED
		assert result.ai_feedback["feedback"] == fallback_model.reply
		assert len(primary_model.prompts) == 1
		assert len(fallback_model.prompts) == 1

	@pytest.mark.asyncio
	async def test_feedback_failure_is_not_fatal(self, make_service, record_store, primary_model, fallback_model):
		primary_model.error = ChatModelError("primary unavailable")
		fallback_model.error = ChatModelError("fallback unavailable")
		service = make_service()
		result = await service.process(AUDIO, "clip.webm", _options(), "user-1")

		assert result.processing_status == ProcessingStatus.COMPLETED
		assert result.ai_feedback is None
		assert result.error_message is None
		assert result.accuracy_score == 1.0
		# no feedback write when the AI call failed
		assert len(record_store.writes) == 5

	@pytest.mark.asyncio
	async def test_scoring_disabled(self, make_service, record_store):
		service = make_service()
		result = await service.process(AUDIO, "clip.webm", _options(enable_scoring=False), "user-1")

		assert result.processing_status == ProcessingStatus.COMPLETED
		assert result.transcribed_text == "bonjour"
		_assert_no_scores(result)
		stored = record_store.get(result.session_id)
		assert stored.scores is None


class TestStages:
	@pytest.mark.asyncio
	async def test_write_order(self, make_service, record_store):
		service = make_service()
		result = await service.process(AUDIO, "clip.webm", _options(), "user-1")

		ops = [op for op, _ in record_store.writes]
		assert ops == ["create", "update", "update", "update", "update", "update"]
		snapshots = [snapshot for _, snapshot in record_store.writes]
		create, audio, transcript, scores, feedback, terminal = snapshots
		assert create.audio_locator is None and create.status == ProcessingStatus.PROCESSING
		assert audio.audio_locator is not None and audio.transcribed_text is None
		assert transcript.transcribed_text == "bonjour" and transcript.scores is None
		assert scores.scores is not None and scores.ai_feedback is None
		assert feedback.ai_feedback is not None and feedback.status == ProcessingStatus.PROCESSING
		assert terminal.status == ProcessingStatus.COMPLETED
		assert {s.id for s in snapshots[1:]} == {result.session_id}

	@pytest.mark.asyncio
	async def test_audio_storage_failure(self, record_store, transcriber, tmp_path):
		blocker = tmp_path / "blocked"
		blocker.write_text("not a directory")
		service = VoiceProcessingService(
			record_store=record_store,
			audio_store=AudioStore(str(blocker / "audio")),
			transcription_client=transcriber,
		)
		result = await service.process(AUDIO, "clip.webm", _options(), "user-1")

		assert result.processing_status == ProcessingStatus.FAILED
		assert "Failed to store audio file" in result.error_message
		assert transcriber.calls == []
		assert _statuses(record_store) == [
			("create", ProcessingStatus.PROCESSING),
			("update", ProcessingStatus.FAILED),
		]

	@pytest.mark.asyncio
	async def test_language_hint_and_filename_reach_transcription(self, make_service, transcriber):
		service = make_service()
		await service.process(AUDIO, None, _options(language="es-ES"), "user-1")
		assert transcriber.calls == [(AUDIO, "es-ES", "audio.webm")]

	@pytest.mark.asyncio
	async def test_without_expected_text_scores_are_skipped(self, make_service, record_store, primary_model):
		service = make_service()
		result = await service.process(AUDIO, "clip.webm", _options(expected_text=None), "user-1")

		assert result.processing_status == ProcessingStatus.COMPLETED
		_assert_no_scores(result)
		# the scores write still happens
		assert len(record_store.writes) == 6
		assert "(none)" in primary_model.prompts[0]
		assert "n/a" in primary_model.prompts[0]

	@pytest.mark.asyncio
	async def test_feedback_disabled(self, make_service, record_store, primary_model):
		service = make_service()
		result = await service.process(AUDIO, "clip.webm", _options(enable_feedback=False), "user-1")

		assert result.processing_status == ProcessingStatus.COMPLETED
		assert result.ai_feedback is None
		assert primary_model.prompts == []
		assert len(record_store.writes) == 5

	@pytest.mark.asyncio
	async def test_no_ai_service(self, make_service):
		service = make_service(with_ai=False)
		result = await service.process(AUDIO, "clip.webm", _options(), "user-1")
		assert result.processing_status == ProcessingStatus.COMPLETED
		assert result.ai_feedback is None

	@pytest.mark.asyncio
	async def test_failed_record_write_still_returns_failure(self, make_service, record_store, monkeypatch):
		service = make_service(transcription_client=FakeTranscriptionClient(error=RuntimeError("no speech")))
		original_update = type(record_store).update

		def update(self, session_id, snapshot):
			if snapshot.status == ProcessingStatus.FAILED:
				raise RuntimeError("database is gone")
			original_update(self, session_id, snapshot)

		monkeypatch.setattr(type(record_store), "update", update)
		result = await service.process(AUDIO, "clip.webm", _options(), "user-1")
		assert result.processing_status == ProcessingStatus.FAILED
		assert "no speech" in result.error_message


class TestSubmit:
	@pytest.mark.asyncio
	async def test_returns_before_completion(self, make_service, record_store):
		gate = asyncio.Event()
		transcriber = FakeTranscriptionClient(text="bonjour", gate=gate)
		service = make_service(transcription_client=transcriber)

		task = service.submit(AUDIO, "clip.webm", _options(), "user-1")
		assert not task.done()

		# let the session reach the transcription stage
		while not transcriber.calls:
			await asyncio.sleep(0)
		session_id = record_store.writes[1][1].id
		assert record_store.get(session_id).status == ProcessingStatus.PROCESSING

		gate.set()
		result = await task
		assert result.session_id == session_id
		assert result.processing_status == ProcessingStatus.COMPLETED

	@pytest.mark.asyncio
	async def test_cancelled_waiter_leaves_session_running(self, make_service, record_store):
		gate = asyncio.Event()
		transcriber = FakeTranscriptionClient(text="bonjour", gate=gate)
		service = make_service(transcription_client=transcriber)

		waiter = asyncio.create_task(service.submit_and_wait(AUDIO, "clip.webm", _options(), "user-1"))
		while not transcriber.calls:
			await asyncio.sleep(0)
		waiter.cancel()
		with pytest.raises(asyncio.CancelledError):
			await waiter
		session_id = record_store.writes[1][1].id

		gate.set()
		await service.aclose()
		assert record_store.get(session_id).status == ProcessingStatus.COMPLETED

	@pytest.mark.asyncio
	async def test_aclose_waits_for_running_sessions(self, make_service, primary_model):
		gate = asyncio.Event()
		transcriber = FakeTranscriptionClient(text="bonjour", gate=gate)
		service = make_service(transcription_client=transcriber)

		task = service.submit(AUDIO, "clip.webm", _options(), "user-1")
		while not transcriber.calls:
			await asyncio.sleep(0)
		closing = asyncio.create_task(service.aclose())
		await asyncio.sleep(0)
		assert not transcriber.closed
		assert not primary_model.closed

		gate.set()
		await closing
		assert task.result().processing_status == ProcessingStatus.COMPLETED
		assert transcriber.closed
		assert primary_model.closed

	@pytest.mark.asyncio
	async def test_concurrent_sessions_are_independent(self, make_service, record_store):
		service = make_service()
		tasks = [service.submit(AUDIO, f"clip{i}.webm", _options(), f"user-{i}") for i in range(5)]
		results = await asyncio.gather(*tasks)

		assert len({r.session_id for r in results}) == 5
		assert all(r.processing_status == ProcessingStatus.COMPLETED for r in results)
		for i, r in enumerate(results):
			assert record_store.get(r.session_id).user_id == f"user-{i}"


class TestQueries:
	@pytest.mark.asyncio
	async def test_get_session_is_scoped_to_owner(self, make_service):
		service = make_service()
		result = await service.process(AUDIO, "clip.webm", _options(), "user-1")

		assert service.get_session(result.session_id, "user-1").session_id == result.session_id
		assert service.get_session(result.session_id, "user-2") is None
		assert service.get_session("missing", "user-1") is None

	@pytest.mark.asyncio
	async def test_list_sessions(self, make_service):
		ok_service = make_service()
		failing_service = make_service(transcription_client=FakeTranscriptionClient(error=RuntimeError("boom")))
		await ok_service.process(AUDIO, "a.webm", _options(), "user-1")
		failed = await failing_service.process(AUDIO, "b.webm", _options(), "user-1")
		await ok_service.process(AUDIO, "c.webm", _options(), "user-2")

		assert len(ok_service.list_sessions("user-1")) == 2
		only_failed = ok_service.list_sessions("user-1", status=ProcessingStatus.FAILED)
		assert [r.session_id for r in only_failed] == [failed.session_id]
		assert len(ok_service.list_sessions("user-1", page=0, size=1)) == 1
		# size is clamped rather than rejected
		assert len(ok_service.list_sessions("user-1", size=0)) == 1
		assert ok_service.list_sessions("user-1", page=5) == []
