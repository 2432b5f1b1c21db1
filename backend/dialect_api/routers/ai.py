from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from ..ai_responder import AIService, AIServiceFailure, PromptTemplateError, build_ai_service
from .auth import get_current_user, User

router = APIRouter(prefix="/ai", tags=["ai"])


class ConversationRequest(BaseModel):
	message: str
	context: str = ""
	language: str = "fr"


class LessonContentRequest(BaseModel):
	topic: str
	difficulty_level: str = "A2"
	language: str = "fr"


async def get_ai_service():
	try:
		service = build_ai_service()
	except ValueError as e:
		raise HTTPException(status_code=503, detail=str(e))
	try:
		yield service
	finally:
		await service.aclose()


@router.post("/conversation")
async def conversation(req: ConversationRequest, user: User = Depends(get_current_user), ai: AIService = Depends(get_ai_service)):
	try:
		text = await ai.generate_conversation_response(req.message, req.context, req.language)
	except PromptTemplateError as e:
		raise HTTPException(status_code=400, detail=str(e))
	except AIServiceFailure as e:
		raise HTTPException(status_code=502, detail=str(e))
	return {"text": text}


@router.post("/lesson-content")
async def lesson_content(req: LessonContentRequest, user: User = Depends(get_current_user), ai: AIService = Depends(get_ai_service)):
	try:
		text = await ai.generate_lesson_content(req.topic, req.difficulty_level, req.language)
	except PromptTemplateError as e:
		raise HTTPException(status_code=400, detail=str(e))
	except AIServiceFailure as e:
		raise HTTPException(status_code=502, detail=str(e))
	return {"text": text}
