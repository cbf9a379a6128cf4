"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class ChannelConfig(BaseModel):
    id: str  # channel reference; chatbots are bound to it in storage
    platform: str  # "whatsapp" | "telegram"
    token: str = ""
    phone_number_id: str = ""  # WhatsApp Cloud sender id
    verify_token: str = ""  # WhatsApp webhook handshake
    webhook_host: str = "0.0.0.0"
    webhook_port: int = 8080
    webhook_path: str = "/webhook"
    api_version: str = "v19.0"


class AIConfig(BaseModel):
    backend: str = "anthropic"  # "anthropic" | "openai"
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 300
    temperature: float = 0.5
    history_window: int = 10
    voice_instruction: str = (
        "Proporciona respuestas completas y concisas. Si mencionas que darás información, "
        "inclúyela en el mismo mensaje. No envíes emojis ni emoticones."
    )


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 60


class OpenAIConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    timeout: int = 60
    transcription_model: str = "whisper-1"
    transcription_language: str = "es"
    tts_model: str = "tts-1"
    tts_voice: str = "alloy"
    embedding_model: str = "text-embedding-3-small"
    embeddings_enabled: bool = False


class StorageConfig(BaseModel):
    db_path: str = "./data/flowbot.db"
    pool_size: int = 5
    reconnect_attempts: int = 5
    reconnect_max_delay: float = 30.0


class CacheConfig(BaseModel):
    default_ttl: int = 300
    tracking_ttl: int = 86400
    ai_response_ttl: int = 180
    persistent: bool = True


class GateConfig(BaseModel):
    dedup_ttl: float = 10.0
    rate_limit_window: float = 60.0
    max_messages_per_window: int = 60


class RetryConfig(BaseModel):
    max_attempts: int = 3
    delay: float = 1.0


class PhoneConfig(BaseModel):
    # Prefix applied to numbers before blacklist lookups. Empty disables it.
    country_code: str = "57"


class WelcomeConfig(BaseModel):
    window_hours: int = 24


class FormsConfig(BaseModel):
    cancel_keyword: str = "cancelar"
    name_field: str = "nombres"


class MessagesConfig(BaseModel):
    invalid_answer: str = "❌ Respuesta no válida."
    empty_name: str = "❌ El nombre no puede estar vacío."
    summary_header: str = "📋 Resumen de datos registrados:"
    registration_marker: str = "registro completado"
    default_cancel: str = "Registro cancelado"
    generic_error: str = "Lo siento, ocurrió un error al procesar tu mensaje."
    validation_error: str = "❌ La respuesta proporcionada no es válida."
    storage_error: str = "❌ Error al guardar los datos. Por favor, intenta nuevamente."
    transcription_error: str = (
        "❌ No pude entender el mensaje de voz. Por favor, intenta hablar más claro "
        "o envía un mensaje de texto."
    )
    filesystem_error: str = "❌ Error al procesar el audio. Por favor, intenta nuevamente."
    ai_apology: str = "Lo siento, no pude generar una respuesta en este momento."
    processing_voice: str = "Procesando mensaje de voz..."


class MaintenanceConfig(BaseModel):
    cache_cleanup_minutes: int = 5
    tracking_purge_minutes: int = 60
    history_retention_days: int = 30
    history_purge_hours: int = 24
    timezone: str = "UTC"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "console"  # "console" | "json"
    data_dir: str = "./data"
    channels: list[ChannelConfig]
    ai: AIConfig = Field(default_factory=AIConfig)
    anthropic: Optional[AnthropicConfig] = None
    openai: Optional[OpenAIConfig] = None
    storage: StorageConfig = Field(default_factory=StorageConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    phone: PhoneConfig = Field(default_factory=PhoneConfig)
    welcome: WelcomeConfig = Field(default_factory=WelcomeConfig)
    forms: FormsConfig = Field(default_factory=FormsConfig)
    messages: MessagesConfig = Field(default_factory=MessagesConfig)
    maintenance: MaintenanceConfig = Field(default_factory=MaintenanceConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(raw_data.get("data_dir", "./data"))

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated)

    return AppConfig(**data)
