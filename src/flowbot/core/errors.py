"""Error taxonomy shared by the routing pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from flowbot.config import MessagesConfig


class FlowbotError(Exception):
    """Base class for all flowbot errors."""

    kind = "internal"


class ValidationError(FlowbotError):
    kind = "validation"


class DatabaseError(FlowbotError):
    kind = "storage"


class TranscriptionError(FlowbotError):
    kind = "transcription"


class FilesystemError(FlowbotError):
    kind = "filesystem"


class ExternalServiceError(FlowbotError):
    kind = "external"

    def __init__(self, service: str, message: str):
        super().__init__(f"{service} service error: {message}")
        self.service = service


class NotFoundError(FlowbotError):
    kind = "not_found"

    def __init__(self, resource: str, ref: str | None = None):
        message = f"{resource} '{ref}' not found" if ref else f"{resource} not found"
        super().__init__(message)
        self.resource = resource


class ConfigurationError(FlowbotError):
    kind = "configuration"


def user_message_for(error: BaseException, messages: MessagesConfig) -> str:
    """Map an exception to the short text shown to the contact."""
    if isinstance(error, ValidationError):
        return messages.validation_error
    if isinstance(error, DatabaseError):
        return messages.storage_error
    if isinstance(error, TranscriptionError):
        return messages.transcription_error
    if isinstance(error, (FilesystemError, OSError)):
        return messages.filesystem_error
    return messages.generic_error
