from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from .settings import settings

logger = logging.getLogger(__name__)


class ChatModelError(Exception):
	pass


class ChatModel(ABC):
	"""One chat backend. `respond` makes exactly one remote call."""

	name: str = "chat"

	def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
		self._client = client or httpx.AsyncClient(timeout=settings.ai_timeout_seconds)

	@abstractmethod
	async def respond(self, prompt: str) -> str:
		...

	async def _post_json(self, url: str, payload: Dict[str, Any], *, params=None, headers=None) -> Dict[str, Any]:
		try:
			r = await self._client.post(url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			raise ChatModelError(f"{self.name} returned HTTP {http_err.response.status_code}") from http_err
		except httpx.RequestError as net_err:
			raise ChatModelError(f"{self.name} request failed: {net_err}") from net_err
		try:
			return r.json()
		except ValueError as e:
			raise ChatModelError(f"{self.name} returned invalid JSON") from e

	async def aclose(self) -> None:
		await self._client.aclose()


class GeminiChatModel(ChatModel):
	name = "gemini"

	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		client: Optional[httpx.AsyncClient] = None,
	) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		if settings.gemini_provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			# Vertex AI Generative REST endpoint (API key via header)
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			# Google AI Studio (Generative Language API)
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		super().__init__(client)

	async def respond(self, prompt: str) -> str:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
		data = await self._post_json(self.base_url, payload, params=params, headers=headers)
		try:
			return data["candidates"][0]["content"]["parts"][0]["text"]
		except (KeyError, IndexError, TypeError) as e:
			logger.debug("Unexpected Gemini response: %s", data)
			raise ChatModelError("Unexpected Gemini response") from e


class ChatCompletionsModel(ChatModel):
	"""OpenAI-compatible `/chat/completions` backend (OpenAI, OpenRouter)."""

	def __init__(
		self,
		api_key: str,
		*,
		url: str,
		model: str,
		extra_headers: Optional[Dict[str, str]] = None,
		name: str = "openai",
		client: Optional[httpx.AsyncClient] = None,
	) -> None:
		if not api_key:
			raise ValueError(f"API key for {name} is not configured")
		self.name = name
		self.url = url
		self.model = model
		self._headers = {
			"Authorization": f"Bearer {api_key}",
			"Content-Type": "application/json",
			**(extra_headers or {}),
		}
		super().__init__(client)

	async def respond(self, prompt: str) -> str:
		headers = {k: v for k, v in self._headers.items() if v}
		payload: Dict[str, Any] = {
			"model": self.model,
			"messages": [{"role": "user", "content": prompt}],
		}
		data = await self._post_json(self.url, payload, headers=headers)
		try:
			return data["choices"][0]["message"]["content"]
		except (KeyError, IndexError, TypeError) as e:
			logger.debug("Unexpected %s response: %s", self.name, data)
			raise ChatModelError(f"Unexpected {self.name} response") from e


class OllamaChatModel(ChatModel):
	name = "ollama"

	def __init__(
		self,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		client: Optional[httpx.AsyncClient] = None,
	) -> None:
		self.base_url = (base_url or settings.ollama_base_url).rstrip("/")
		self.model = model or settings.ollama_model
		super().__init__(client)

	async def respond(self, prompt: str) -> str:
		payload = {"model": self.model, "prompt": prompt, "stream": False}
		data = await self._post_json(f"{self.base_url}/api/generate", payload)
		try:
			return data["response"]
		except (KeyError, TypeError) as e:
			raise ChatModelError("Unexpected Ollama response") from e


def build_chat_model(provider: str) -> ChatModel:
	provider = (provider or "").lower()
	if provider == "gemini":
		return GeminiChatModel()
	if provider == "openrouter":
		return ChatCompletionsModel(
			settings.openrouter_api_key or "",
			url=settings.openrouter_base_url,
			model=settings.openrouter_model,
			extra_headers={
				"HTTP-Referer": settings.openrouter_referer,
				"X-Title": settings.openrouter_title,
			},
			name="openrouter",
		)
	if provider == "openai":
		return ChatCompletionsModel(
			settings.openai_api_key or "",
			url=f"{settings.openai_base_url.rstrip('/')}/chat/completions",
			model=settings.openai_chat_model,
			name="openai",
		)
	if provider == "ollama":
		return OllamaChatModel()
	raise ValueError(f"Unknown AI provider: {provider}")
