from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from ..session_records import ProcessingStatus, SessionType
from ..voice_processing import (
	VoiceProcessingOptions,
	VoiceProcessingResult,
	VoiceProcessingService,
	build_voice_service,
)
from .auth import User, get_current_user

router = APIRouter(prefix="/voice", tags=["voice"])

_service: Optional[VoiceProcessingService] = None


def get_voice_service() -> VoiceProcessingService:
	global _service
	if _service is None:
		_service = build_voice_service()
	return _service


async def close_voice_service() -> None:
	global _service
	if _service is not None:
		await _service.aclose()
		_service = None


def _blank_to_none(value: Optional[str]) -> Optional[str]:
	if value is None or not value.strip():
		return None
	return value


@router.post("/process", response_model=VoiceProcessingResult)
async def process_voice(
	audio: UploadFile = File(...),
	session_type: SessionType = Form(...),
	expected_text: Optional[str] = Form(default=None),
	language: Optional[str] = Form(default=None),
	lesson_id: Optional[str] = Form(default=None),
	enable_feedback: bool = Form(default=True),
	enable_scoring: bool = Form(default=True),
	user: User = Depends(get_current_user),
	service: VoiceProcessingService = Depends(get_voice_service),
):
	"""Process a recorded utterance.

	The session runs as its own task; this handler only waits for its result,
	and a dropped connection leaves the session running. A
	session that failed is still returned with status 200 and
	``processing_status == "FAILED"``.
	"""
	data = await audio.read()
	if not data:
		raise HTTPException(status_code=400, detail="audio file is empty")
	options = VoiceProcessingOptions(
		session_type=session_type,
		expected_text=_blank_to_none(expected_text),
		language=_blank_to_none(language),
		lesson_id=_blank_to_none(lesson_id),
		enable_feedback=enable_feedback,
		enable_scoring=enable_scoring,
	)
	return await service.submit_and_wait(data, audio.filename, options, user.username)


@router.get("/session/{session_id}", response_model=VoiceProcessingResult)
async def get_voice_session(
	session_id: str,
	user: User = Depends(get_current_user),
	service: VoiceProcessingService = Depends(get_voice_service),
):
	result = service.get_session(session_id, user.username)
	if result is None:
		raise HTTPException(status_code=404, detail="Voice session not found")
	return result


@router.get("/sessions")
async def list_voice_sessions(
	page: int = Query(default=0, ge=0),
	size: int = Query(default=20, ge=1, le=100),
	status: Optional[ProcessingStatus] = Query(default=None),
	user: User = Depends(get_current_user),
	service: VoiceProcessingService = Depends(get_voice_service),
):
	items = service.list_sessions(user.username, page=page, size=size, status=status)
	return {"page": page, "size": size, "items": items}
