"""Runs data-collection forms: trigger detection, answer capture, submission."""

from __future__ import annotations

from flowbot.config import FormsConfig, MessagesConfig
from flowbot.core.errors import DatabaseError, FlowbotError, user_message_for
from flowbot.core.session import SessionManager
from flowbot.core.text import normalize_text, strip_channel_suffix
from flowbot.forms.state import (
    Collecting,
    Effect,
    SendText,
    SessionState,
    SubmitForm,
    capture_answer,
    reprompt,
    start_form,
)
from flowbot.log import get_logger
from flowbot.messenger.models import OutgoingMessage, SendFn
from flowbot.storage.client_repo import ClientDataRepository
from flowbot.storage.form_repo import FormRepository
from flowbot.storage.history_repo import ChatHistoryRepository
from flowbot.storage.models import Chatbot

logger = get_logger(__name__)


class DataCollectionEngine:
    """Drives :mod:`flowbot.forms.state` against storage and the transport.

    A new state is committed only after all of its effects succeed, so a
    failed submission leaves the contact on the same pending field.
    """

    def __init__(
        self,
        forms: FormRepository,
        clients: ClientDataRepository,
        history: ChatHistoryRepository,
        sessions: SessionManager,
        forms_config: FormsConfig,
        messages: MessagesConfig,
    ):
        self._forms = forms
        self._clients = clients
        self._history = history
        self._sessions = sessions
        self._forms_config = forms_config
        self._messages = messages

    def is_collecting(self, chatbot_id: str, contact: str) -> bool:
        return isinstance(self._sessions.get(chatbot_id, contact), Collecting)

    async def try_start(self, chatbot: Chatbot, contact: str, text: str, send: SendFn) -> bool:
        """Start the chatbot's form if *text* is one of its trigger words."""
        normalized = normalize_text(text)
        if not normalized:
            return False
        config = await self._forms.get_form_trigger_config(chatbot.id)
        if config is None or normalized not in config.trigger_words:
            return False

        state, effects = start_form(config)
        await self._run(chatbot, contact, state, effects, send)
        logger.info("form_started", chatbot_id=chatbot.id, contact=contact, fields=len(config.fields))
        return True

    async def capture(self, chatbot: Chatbot, contact: str, text: str, send: SendFn) -> None:
        state = self._sessions.get(chatbot.id, contact)
        if not isinstance(state, Collecting):
            return
        try:
            next_state, effects = capture_answer(state, text, self._forms_config, self._messages)
            await self._run(chatbot, contact, next_state, effects, send)
        except Exception as e:
            await self.fail(chatbot, contact, e, send)

    async def fail(self, chatbot: Chatbot, contact: str, error: BaseException, send: SendFn) -> None:
        """Tell the contact something went wrong and repeat the pending prompt."""
        state = self._sessions.get(chatbot.id, contact)
        logger.error(
            "form_error",
            chatbot_id=chatbot.id,
            contact=contact,
            kind=getattr(error, "kind", "internal"),
            error=str(error),
        )
        try:
            await send(OutgoingMessage(chat_id=contact, text=user_message_for(error, self._messages)))
            for effect in reprompt(state):
                await send(OutgoingMessage(chat_id=contact, text=effect.text))
        except Exception as e:
            logger.error("form_error_notice_failed", chatbot_id=chatbot.id, contact=contact, error=str(e))

    async def _run(
        self,
        chatbot: Chatbot,
        contact: str,
        next_state: SessionState,
        effects: list[Effect],
        send: SendFn,
    ) -> None:
        for effect in effects:
            match effect:
                case SendText(text=text):
                    await send(OutgoingMessage(chat_id=contact, text=text))
                case SubmitForm():
                    await self._submit(chatbot, contact, effect)
                    # The record is stored; the form is over even if the summary never arrives.
                    self._sessions.set(chatbot.id, contact, next_state)
                    await send(OutgoingMessage(chat_id=contact, text=effect.summary))
        self._sessions.set(chatbot.id, contact, next_state)

    async def _submit(self, chatbot: Chatbot, contact: str, effect: SubmitForm) -> None:
        record = {**effect.answers, "phone_number": strip_channel_suffix(contact)}
        name_field = self._forms_config.name_field
        if record.get(name_field):
            record["full_name"] = record[name_field]

        try:
            await self._clients.save_form_submission(chatbot.user_id, chatbot.id, record)
            await self._history.append(
                chatbot.user_id,
                chatbot.id,
                contact,
                self._messages.registration_marker,
                effect.success_message,
            )
        except FlowbotError:
            raise
        except Exception as e:
            raise DatabaseError(f"form submission failed: {e}") from e
        logger.info("form_completed", chatbot_id=chatbot.id, contact=contact, fields=len(effect.answers))
