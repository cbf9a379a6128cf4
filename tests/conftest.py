from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from flowbot.ai.client import AIResponse
from flowbot.ai.responder import AIResponder
from flowbot.cache.response_cache import ResponseCache
from flowbot.config import AIConfig, FormsConfig, MessagesConfig, RetryConfig
from flowbot.core.session import SessionManager
from flowbot.core.types import Platform
from flowbot.flows.blacklist import BlacklistGate
from flowbot.flows.dynamic import DynamicMatcher
from flowbot.flows.router import MessageRouter
from flowbot.flows.welcome import WelcomeDispatcher
from flowbot.forms.engine import DataCollectionEngine
from flowbot.messenger.models import Attachment, IncomingMessage, OutgoingMessage
from flowbot.storage.blacklist_repo import BlacklistRepository
from flowbot.storage.chatbot_repo import ChatbotRepository
from flowbot.storage.client_repo import ClientDataRepository
from flowbot.storage.database import Database
from flowbot.storage.flow_repo import FlowRepository
from flowbot.storage.form_repo import FormRepository
from flowbot.storage.history_repo import ChatHistoryRepository
from flowbot.storage.models import FormField, FormMessages
from flowbot.storage.prompt_repo import PromptRepository
from flowbot.storage.welcome_repo import WelcomeRepository

CHANNEL = "wa-main"
TENANT = "tenant-1"


class FakeClock:
    """Controllable time source, in seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Outbox:
    """Collects everything a component sends."""

    def __init__(self) -> None:
        self.messages: list[OutgoingMessage] = []

    async def __call__(self, message: OutgoingMessage) -> None:
        self.messages.append(message)

    @property
    def texts(self) -> list[str]:
        return [m.text for m in self.messages if m.text]

    def clear(self) -> None:
        self.messages.clear()


def make_message(text: str = "", contact: str = "521234567890", message_id: str = "", audio: bytes | None = None):
    return IncomingMessage(
        platform=Platform.WHATSAPP,
        channel_id=CHANNEL,
        contact_id=contact,
        message_id=message_id,
        text=text,
        timestamp=datetime.now(timezone.utc),
        audio=Attachment(data=audio, media_type="audio/ogg", filename="voice.ogg") if audio else None,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def retry_config():
    return RetryConfig(max_attempts=3, delay=0)


@pytest.fixture
def messages():
    return MessagesConfig()


@pytest.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "flowbot.db"), pool_size=3, reconnect_base_delay=0)
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def cache(db, clock):
    return ResponseCache(default_ttl=300, db=db, clock=clock)


@pytest.fixture
def chatbots(db, cache):
    return ChatbotRepository(db, cache)


@pytest.fixture
def flows(db, cache):
    return FlowRepository(db, cache)


@pytest.fixture
def welcomes(db, cache, clock):
    return WelcomeRepository(db, cache, window_seconds=24 * 3600, tracking_ttl=24 * 3600, clock=clock)


@pytest.fixture
def forms(db):
    return FormRepository(db)


@pytest.fixture
def prompts(db):
    return PromptRepository(db)


@pytest.fixture
def blacklist(db):
    return BlacklistRepository(db)


@pytest.fixture
def clients(db):
    return ClientDataRepository(db)


@pytest.fixture
def history(db):
    return ChatHistoryRepository(db)


@pytest.fixture
def sessions():
    return SessionManager()


@pytest.fixture
async def chatbot(chatbots):
    return await chatbots.create(TENANT, CHANNEL, name="Demo", chatbot_id="bot-1")


@pytest.fixture
async def registration_form(forms, chatbot):
    await forms.set_form_fields(
        chatbot.id,
        [
            FormField(name="nombres", label="¿Cuál es tu nombre?", validation_type="name", order_index=0),
            FormField(name="email", label="¿Cuál es tu correo?", validation_type="email", order_index=1),
            FormField(name="edad", label="¿Cuántos años tienes?", validation_type="number", order_index=2),
        ],
    )
    await forms.set_form_messages(
        chatbot.id,
        FormMessages(
            welcome_message="Vamos a registrarte.",
            success_message="¡Registro exitoso!",
            cancel_message="Registro cancelado por el usuario.",
            trigger_words=("Registro",),
        ),
    )
    return await forms.get_form_trigger_config(chatbot.id)


@pytest.fixture
def ai_client():
    client = AsyncMock()
    client.complete.return_value = AIResponse(text="¡Hola! ¿En qué puedo ayudarte?")
    return client


@pytest.fixture
def synthesizer(tmp_path):
    synth = AsyncMock()

    async def _synthesize(text):
        path = tmp_path / "reply.ogg"
        path.write_bytes(b"OggS")
        return path

    synth.synthesize.side_effect = _synthesize
    return synth


@pytest.fixture
def transcriber():
    t = AsyncMock()
    t.transcribe.return_value = "hola"
    return t


@pytest.fixture
def engine(forms, clients, history, sessions, messages):
    return DataCollectionEngine(forms, clients, history, sessions, FormsConfig(), messages)


@pytest.fixture
def responder(ai_client, prompts, history, cache, messages, synthesizer):
    return AIResponder(
        ai_client,
        prompts,
        history,
        cache,
        AIConfig(),
        messages,
        response_ttl=180,
        synthesizer=synthesizer,
    )


@pytest.fixture
def router(outbox, chatbots, blacklist, welcomes, flows, history, engine, responder, messages, retry_config, transcriber):
    return MessageRouter(
        channel_ref=CHANNEL,
        send=outbox,
        chatbots=chatbots,
        blacklist=BlacklistGate(blacklist, retry_config, country_code="57"),
        welcome=WelcomeDispatcher(welcomes, retry_config),
        dynamic=DynamicMatcher(flows, history, retry_config),
        forms=engine,
        ai=responder,
        messages=messages,
        retry_config=retry_config,
        transcriber=transcriber,
    )


@pytest.fixture(name="make_message")
def make_message_fixture():
    return make_message
