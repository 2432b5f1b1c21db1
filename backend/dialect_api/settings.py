from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Chat backends: "gemini", "openrouter", "openai" or "ollama"
	ai_provider: str = Field(default="gemini", validation_alias="AI_PROVIDER")
	ai_fallback_provider: str = Field(default="openrouter", validation_alias="AI_FALLBACK_PROVIDER")
	ai_enable_fallback: bool = Field(default=True, validation_alias="AI_ENABLE_FALLBACK")
	ai_timeout_seconds: float = Field(default=30, validation_alias="AI_TIMEOUT_SECONDS")

	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="Dialect Game", validation_alias="OPENROUTER_TITLE")

	openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
	openai_base_url: str = Field(default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL")
	openai_chat_model: str = Field(default="gpt-4o-mini", validation_alias="OPENAI_CHAT_MODEL")
	openai_transcription_model: str = Field(default="whisper-1", validation_alias="OPENAI_TRANSCRIPTION_MODEL")

	ollama_base_url: str = Field(default="http://localhost:11434", validation_alias="OLLAMA_BASE_URL")
	ollama_model: str = Field(default="llama3.1", validation_alias="OLLAMA_MODEL")

	# Speech-to-text: "openai" (Whisper) or "google" (Cloud Speech-to-Text)
	transcription_provider: str = Field(default="openai", validation_alias="TRANSCRIPTION_PROVIDER")
	speech_default_language: str = Field(default="fr-FR", validation_alias="SPEECH_DEFAULT_LANGUAGE")

	audio_upload_dir: str = Field(default="uploads/audio", validation_alias="AUDIO_UPLOAD_DIR")

	# Tokens are issued elsewhere; we only verify them
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")

	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
