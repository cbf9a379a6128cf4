"""Data-collection session state and its transitions.

A contact's session is either :class:`Idle` or :class:`Collecting`. The
transition functions are pure: they take the current state and an input and
return the next state plus a list of effects for the engine to carry out.
Nothing here touches storage or the transport.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Union

from flowbot.config import FormsConfig, MessagesConfig
from flowbot.forms.validation import validate_field_value
from flowbot.storage.models import FormConfig, FormField, FormMessages


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Collecting:
    fields: tuple[FormField, ...]
    messages: FormMessages
    cursor: int = 0
    answers: dict[str, str] = field(default_factory=dict)

    @property
    def current_field(self) -> FormField:
        return self.fields[self.cursor]

    @property
    def is_last_field(self) -> bool:
        return self.cursor >= len(self.fields) - 1


SessionState = Union[Idle, Collecting]

IDLE = Idle()


@dataclass(frozen=True)
class SendText:
    text: str


@dataclass(frozen=True)
class SubmitForm:
    """Persist the answers, record history and send *summary*."""

    answers: dict[str, str]
    success_message: str
    summary: str


Effect = Union[SendText, SubmitForm]


def start_form(config: FormConfig) -> tuple[Collecting, list[Effect]]:
    """Snapshot *config* into a fresh session and prompt the first field."""
    state = Collecting(fields=config.fields, messages=config.messages)
    effects: list[Effect] = []
    if config.messages.welcome_message:
        effects.append(SendText(config.messages.welcome_message))
    effects.append(SendText(state.current_field.label))
    return state, effects


def is_cancel(text: str, cancel_keyword: str) -> bool:
    return text.strip().lower() == cancel_keyword.strip().lower()


def is_name_field(form_field: FormField, name_field: str) -> bool:
    return form_field.validation_type == "name" or form_field.name == name_field


def build_summary(state: Collecting, answers: dict[str, str], header: str) -> str:
    """Success message followed by one ``label: value`` line per field, in field order."""
    lines = [f"{state.messages.success_message}\n\n{header}"]
    for f in state.fields:
        if f.name in answers:
            lines.append(f"{f.label}: {answers[f.name]}")
    return "\n".join(lines) + "\n"


def capture_answer(
    state: Collecting,
    text: str,
    forms: FormsConfig,
    messages: MessagesConfig,
) -> tuple[SessionState, list[Effect]]:
    """Apply one contact reply to an in-progress form."""
    if is_cancel(text, forms.cancel_keyword):
        return IDLE, [SendText(state.messages.cancel_message or messages.default_cancel)]

    current = state.current_field
    if is_name_field(current, forms.name_field):
        if not text.strip():
            return state, [SendText(messages.empty_name), SendText(current.label)]
    elif not validate_field_value(text, current.validation_type):
        return state, [SendText(messages.invalid_answer), SendText(current.label)]

    answers = {**state.answers, current.name: text}
    if not state.is_last_field:
        advanced = replace(state, cursor=state.cursor + 1, answers=answers)
        return advanced, [SendText(advanced.current_field.label)]

    return IDLE, [
        SubmitForm(
            answers=answers,
            success_message=state.messages.success_message,
            summary=build_summary(state, answers, messages.summary_header),
        )
    ]


def reprompt(state: SessionState) -> list[Effect]:
    """Repeat the pending field's prompt, if any."""
    if isinstance(state, Collecting):
        return [SendText(state.current_field.label)]
    return []
