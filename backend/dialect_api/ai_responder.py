"""
AI Responder
============

Renders a prompt template and sends it to the configured primary chat model.
If the primary call fails and a fallback model is configured and enabled, the
same prompt is sent once to the fallback. When no model produces an answer an
`AIServiceFailure` is raised naming every underlying cause.

The responder does not know which use case it serves. Conversation replies,
pronunciation feedback and lesson-content generation differ only in the
template and the substitution map handed to `AIResponder.complete`.
"""

from __future__ import annotations

import logging
from string import Formatter
from typing import Any, FrozenSet, Mapping, Optional

from .chat_models import ChatModel, build_chat_model
from .settings import settings

logger = logging.getLogger(__name__)


class PromptTemplateError(ValueError):
	pass


class AIServiceFailure(Exception):
	"""Raised when neither the primary nor the fallback model produced a response.

	Attributes:
		primary_error: Exception raised by the primary model
		fallback_error: Exception raised by the fallback model, or None when no
			fallback was attempted
	"""

	def __init__(self, primary_error: BaseException, fallback_error: Optional[BaseException] = None) -> None:
		self.primary_error = primary_error
		self.fallback_error = fallback_error
		if fallback_error is None:
			message = f"AI model failed and no fallback configured (primary: {primary_error})"
		else:
			message = (
				f"Both primary and fallback AI models failed "
				f"(primary: {primary_error}; fallback: {fallback_error})"
			)
		super().__init__(message)


class PromptTemplate:
	"""Prompt text with ``{name}`` placeholders; literal braces are written ``{{`` and ``}}``."""

	def __init__(self, text: str) -> None:
		self.text = text
		self.variables: FrozenSet[str] = frozenset(
			field for _, field, _, _ in Formatter().parse(text) if field
		)

	def render(self, values: Mapping[str, Any]) -> str:
		missing = sorted(self.variables - set(values))
		if missing:
			raise PromptTemplateError(f"Missing prompt variables: {', '.join(missing)}")
		return self.text.format_map({k: "" if v is None else str(v) for k, v in values.items()})


class AIResponder:
	def __init__(self, primary: ChatModel, fallback: Optional[ChatModel] = None, *, enable_fallback: bool = True) -> None:
		self.primary = primary
		self.fallback = fallback
		self.enable_fallback = enable_fallback

	async def complete(self, template: PromptTemplate, values: Mapping[str, Any]) -> str:
		prompt = template.render(values)
		return await self.respond(prompt)

	async def respond(self, prompt: str) -> str:
		try:
			logger.debug("Calling primary AI model")
			return await self.primary.respond(prompt)
		except Exception as e:
			logger.warning("Primary AI model failed: %s", e)
			primary_error = e

		if not self.enable_fallback or self.fallback is None:
			raise AIServiceFailure(primary_error) from primary_error

		try:
			logger.debug("Calling fallback AI model")
			return await self.fallback.respond(prompt)
		except Exception as fallback_error:
			logger.error("Fallback AI model also failed: %s", fallback_error)
			raise AIServiceFailure(primary_error, fallback_error) from fallback_error

	async def aclose(self) -> None:
		await self.primary.aclose()
		if self.fallback is not None:
			await self.fallback.aclose()


CONVERSATION_TEMPLATE = PromptTemplate("""
You are a teaching assistant helping a learner practise {language}.

Lesson context: {context}
Learner message: {userMessage}

Reply naturally in {language}, adapting your level to the learner.
Correct mistakes where needed and encourage the learner.
""".strip())

VOICE_FEEDBACK_TEMPLATE = PromptTemplate("""
Pronunciation analysis:
- Expected text: {expectedText}
- Transcribed text: {transcribedText}
- Confidence score: {confidenceScore}

Give constructive feedback on the learner's pronunciation.
Be encouraging and offer specific advice.
""".strip())

LESSON_CONTENT_TEMPLATE = PromptTemplate("""
Generate the content of a language lesson.

Topic: {topic}
Difficulty level: {difficultyLevel}
Target language: {language}

Create:
1. A realistic situational context
2. A list of 5-8 vocabulary words with definitions
3. 3-5 practice exercises
4. A short dialogue that uses the vocabulary

Return structured JSON.
""".strip())


class AIService:
	def __init__(self, responder: AIResponder) -> None:
		self.responder = responder

	async def generate_conversation_response(self, user_message: str, context: str, language: str) -> str:
		return await self.responder.complete(CONVERSATION_TEMPLATE, {
			"context": context,
			"language": language,
			"userMessage": user_message,
		})

	async def generate_voice_feedback(
		self,
		transcribed_text: Optional[str],
		expected_text: Optional[str],
		confidence_score: Optional[float],
	) -> str:
		return await self.responder.complete(VOICE_FEEDBACK_TEMPLATE, {
			"expectedText": expected_text or "(none)",
			"transcribedText": transcribed_text or "",
			"confidenceScore": "n/a" if confidence_score is None else f"{confidence_score:.2f}",
		})

	async def generate_lesson_content(self, topic: str, difficulty_level: str, language: str) -> str:
		return await self.responder.complete(LESSON_CONTENT_TEMPLATE, {
			"topic": topic,
			"difficultyLevel": difficulty_level,
			"language": language,
		})

	async def aclose(self) -> None:
		await self.responder.aclose()


def build_ai_service() -> AIService:
	primary = build_chat_model(settings.ai_provider)
	fallback: Optional[ChatModel] = None
	if settings.ai_enable_fallback:
		try:
			fallback = build_chat_model(settings.ai_fallback_provider)
		except ValueError as e:
			# Missing credentials mean no fallback, not a startup error
			logger.warning("Fallback AI model unavailable: %s", e)
	return AIService(AIResponder(primary, fallback, enable_fallback=settings.ai_enable_fallback))
