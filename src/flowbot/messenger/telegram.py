"""Telegram messenger adapter using python-telegram-bot v21+."""

from __future__ import annotations

from datetime import datetime, timezone

from telegram import Update
from telegram.ext import Application, ContextTypes, MessageHandler as TGMessageHandler, filters

from flowbot.config import ChannelConfig
from flowbot.core.types import Platform
from flowbot.log import get_logger
from flowbot.messenger.base import MessengerAdapter
from flowbot.messenger.gate import InboundGate
from flowbot.messenger.models import Attachment, IncomingMessage, OutgoingMessage

logger = get_logger(__name__)


class TelegramAdapter(MessengerAdapter):
    """Telegram bot adapter. Contacts are Telegram chat ids."""

    def __init__(self, config: ChannelConfig, gate: InboundGate):
        super().__init__(config, gate)
        self._app: Application | None = None  # type: ignore[type-arg]

    @property
    def platform_name(self) -> str:
        return Platform.TELEGRAM

    async def start(self) -> None:
        token = self.config.token
        if not token:
            raise ValueError(f"Telegram bot token not configured for channel '{self.channel_id}'")

        # per-contact ordering is enforced by _dispatch
        self._app = Application.builder().token(token).concurrent_updates(True).build()
        self._app.add_handler(
            TGMessageHandler((filters.TEXT & ~filters.COMMAND) | filters.VOICE | filters.AUDIO, self._on_update)
        )

        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling(drop_pending_updates=True)  # type: ignore[union-attr]
        logger.info("telegram_adapter_started", channel=self.channel_id)

    async def stop(self) -> None:
        if self._app:
            await self._app.updater.stop()  # type: ignore[union-attr]
            await self._app.stop()
            await self._app.shutdown()
            logger.info("telegram_adapter_stopped", channel=self.channel_id)
        await self.drain()

    async def send_message(self, message: OutgoingMessage) -> None:
        if not self._app or not self._app.bot:
            return

        bot = self._app.bot
        chat_id = int(message.chat_id)
        caption = message.text or None

        if message.media_path:
            with open(message.media_path, "rb") as f:
                if message.ptt:
                    await bot.send_voice(chat_id=chat_id, voice=f, caption=caption)
                else:
                    await bot.send_document(chat_id=chat_id, document=f, caption=caption)
            return

        if message.media_url:
            match message.media_type:
                case "image":
                    await bot.send_photo(chat_id=chat_id, photo=message.media_url, caption=caption)
                case "audio":
                    await bot.send_audio(chat_id=chat_id, audio=message.media_url, caption=caption)
                case "video":
                    await bot.send_video(chat_id=chat_id, video=message.media_url, caption=caption)
                case _:
                    await bot.send_document(chat_id=chat_id, document=message.media_url, caption=caption)
            return

        if message.text:
            await bot.send_message(chat_id=chat_id, text=message.text)

    async def _on_update(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Convert a Telegram update into an IncomingMessage and dispatch it."""
        msg = update.message
        if msg is None:
            return

        audio: Attachment | None = None
        voice = msg.voice or msg.audio
        if voice is not None:
            try:
                tg_file = await voice.get_file()
                data = await tg_file.download_as_bytearray()
                audio = Attachment(
                    data=bytes(data),
                    media_type=voice.mime_type or "audio/ogg",
                    filename="voice.ogg" if msg.voice else (getattr(voice, "file_name", None) or "audio.mp3"),
                )
            except Exception as e:
                logger.warning("telegram_audio_download_error", channel=self.channel_id, error=str(e))
                return

        text = msg.text or msg.caption or ""
        if not text and audio is None:
            return

        self._dispatch(
            IncomingMessage(
                platform=Platform.TELEGRAM,
                channel_id=self.channel_id,
                contact_id=str(msg.chat_id),
                message_id=f"{msg.chat_id}:{msg.message_id}",
                text=text,
                timestamp=msg.date or datetime.now(timezone.utc),
                display_name=msg.from_user.full_name if msg.from_user else "",
                audio=audio,
            )
        )
