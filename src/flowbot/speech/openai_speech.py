"""Speech-to-text, text-to-speech and embeddings on the OpenAI API."""

from __future__ import annotations

import contextlib
import uuid
from pathlib import Path

import openai

from flowbot.config import OpenAIConfig
from flowbot.core.errors import ExternalServiceError, FilesystemError, TranscriptionError
from flowbot.log import get_logger

logger = get_logger(__name__)


def create_openai_client(config: OpenAIConfig) -> openai.AsyncOpenAI:
    return openai.AsyncOpenAI(api_key=config.api_key, base_url=config.base_url, timeout=config.timeout)


class Transcriber:
    """Whisper transcription of voice notes."""

    def __init__(self, client: openai.AsyncOpenAI, config: OpenAIConfig):
        self._client = client
        self._model = config.transcription_model
        self._language = config.transcription_language

    async def transcribe(self, audio: bytes, filename: str = "audio.ogg") -> str:
        if not audio:
            raise TranscriptionError("no audio to transcribe")
        try:
            result = await self._client.audio.transcriptions.create(
                model=self._model,
                file=(filename, audio),
                language=self._language or openai.NOT_GIVEN,
            )
        except openai.OpenAIError as e:
            raise TranscriptionError(f"transcription failed: {e}") from e

        text = (result.text or "").strip()
        if not text:
            raise TranscriptionError("transcription returned empty text")
        logger.info("audio_transcribed", bytes=len(audio), chars=len(text))
        return text


class SpeechSynthesizer:
    """Renders replies as ogg/opus voice notes in a temp directory.

    The caller owns the returned file and must delete it.
    """

    def __init__(self, client: openai.AsyncOpenAI, config: OpenAIConfig, tmp_dir: str | Path):
        self._client = client
        self._model = config.tts_model
        self._voice = config.tts_voice
        self._tmp_dir = Path(tmp_dir)

    async def synthesize(self, text: str) -> Path:
        try:
            response = await self._client.audio.speech.create(
                model=self._model,
                voice=self._voice,
                input=text,
                response_format="opus",
            )
        except openai.OpenAIError as e:
            raise ExternalServiceError("tts", str(e)) from e

        path = self._tmp_dir / f"voice_{uuid.uuid4().hex[:12]}.ogg"
        try:
            self._tmp_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(response.content)
        except OSError as e:
            with contextlib.suppress(OSError):
                path.unlink(missing_ok=True)
            raise FilesystemError(f"could not write {path}: {e}") from e
        logger.debug("speech_synthesized", path=str(path), chars=len(text))
        return path


class Embedder:
    """Callable producing an embedding vector for one text."""

    def __init__(self, client: openai.AsyncOpenAI, config: OpenAIConfig):
        self._client = client
        self._model = config.embedding_model

    async def __call__(self, text: str) -> list[float]:
        try:
            response = await self._client.embeddings.create(model=self._model, input=text)
        except openai.OpenAIError as e:
            raise ExternalServiceError("embeddings", str(e)) from e
        return list(response.data[0].embedding)
