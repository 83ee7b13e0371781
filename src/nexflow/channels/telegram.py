"""Telegram bot connector."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlparse

from loguru import logger
from telegram import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram import Message as TelegramMessage
from telegram.error import RetryAfter, TelegramError
from telegram.ext import Application, ContextTypes, TypeHandler
from telegramify_markdown import markdownify as md

from nexflow.channels.base import Button, Connector, Message, Response, ResponseKind
from nexflow.channels.ratelimit import RateLimiter
from nexflow.channels.stream import DEFAULT_CAPACITY, MessageStream
from nexflow.domain.entities import Channel, User
from nexflow.domain.repositories import UserRepository
from nexflow.errors import (
    BotBlockedError,
    BotKickedError,
    ChatNotFoundError,
    ConnectorError,
    MessageTooLongError,
    RateLimitedError,
    UserDeactivatedError,
)

MAX_TEXT_LENGTH = 4096
MAX_CAPTION_LENGTH = 1024
SPLIT_DELAY = 0.1
POLL_TIMEOUT = 60
RATE_LIMIT_TOKENS = 30
RATE_LIMIT_INTERVAL = 1.0
BUTTONS_PER_ROW = 2
DEFAULT_PARSE_MODE = "MarkdownV2"

_SPLIT_CHARS = frozenset("\n.!?")


def exclude_none(d: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


def split_long_text(text: str, limit: int = MAX_TEXT_LENGTH) -> list[str]:
    """Split ``text`` into parts of at most ``limit`` code points.

    Near the end of a part (within 10 units of the limit) the split happens
    right before a newline or sentence terminator when one follows.
    """
    if len(text) <= limit:
        return [text]

    parts: list[str] = []
    current: list[str] = []
    last = len(text) - 1
    for i, ch in enumerate(text):
        if len(current) >= limit:
            parts.append("".join(current))
            current = []
        current.append(ch)
        if i < last and len(current) >= limit - 10 and text[i + 1] in _SPLIT_CHARS:
            parts.append("".join(current))
            current = []
    if current:
        parts.append("".join(current))
    return parts


def truncate_caption(caption: str, limit: int = MAX_CAPTION_LENGTH) -> str:
    if len(caption) <= limit:
        return caption
    return caption[: limit - 3] + "..."


def build_keyboard(buttons: Sequence[Button] | None) -> InlineKeyboardMarkup | None:
    """Lay buttons out two per row. An empty sequence yields an empty keyboard."""
    if buttons is None:
        return None
    rows: list[list[InlineKeyboardButton]] = []
    for start in range(0, len(buttons), BUTTONS_PER_ROW):
        rows.append([_keyboard_button(b) for b in buttons[start : start + BUTTONS_PER_ROW]])
    return InlineKeyboardMarkup(rows)


def _keyboard_button(button: Button) -> InlineKeyboardButton:
    if button.url:
        return InlineKeyboardButton(button.label, url=button.url)
    if button.inline_query:
        return InlineKeyboardButton(button.label, switch_inline_query_current_chat=button.inline_query)
    return InlineKeyboardButton(button.label, callback_data=button.payload or button.label)


def parse_chat_id(user_id: str) -> int:
    """Extract the chat id from a ``"<user_id>:<chat_id>"`` address."""
    parts = user_id.split(":")
    if len(parts) != 2:
        raise ConnectorError("invalid chat ID format, expected 'user_id:chat_id'")
    try:
        return int(parts[1])
    except ValueError as exc:
        raise ConnectorError(f"invalid chat ID: {parts[1]}") from exc


def translate_send_error(exc: TelegramError) -> Exception:
    """Map known Bot API failures to distinct non-retryable transport errors."""
    if isinstance(exc, RetryAfter):
        return RateLimitedError(_seconds(exc.retry_after))
    text = str(exc).lower()
    if "bot was blocked by the user" in text:
        return BotBlockedError()
    if "user is deactivated" in text:
        return UserDeactivatedError()
    if "bot was kicked" in text:
        return BotKickedError()
    if "chat not found" in text:
        return ChatNotFoundError()
    if "too many requests" in text:
        return RateLimitedError()
    if "message is too long" in text:
        return MessageTooLongError()
    return ConnectorError(f"telegram send failed: {exc}")


def _seconds(value: Any) -> Any:
    if isinstance(value, timedelta):
        return int(value.total_seconds())
    return value


def _unix(value: Any) -> Any:
    if isinstance(value, datetime):
        return int(value.timestamp())
    return value


def classify_message(message: TelegramMessage) -> str:
    text = getattr(message, "text", None)
    if text:
        return "command" if text.startswith("/") else "text"
    for kind in ("photo", "document", "audio", "voice", "video", "video_note", "sticker", "location", "contact"):
        if getattr(message, kind, None):
            return kind
    return "unknown"


def _command_parts(text: str) -> tuple[str, str]:
    head, _, args = text.partition(" ")
    command = head[1:].split("@", 1)[0]
    return command, args.strip()


def extract_message_content(message: TelegramMessage) -> tuple[str, dict[str, Any]]:
    """Render a Telegram message as text content plus a flat metadata mapping."""
    sender = message.from_user
    metadata: dict[str, Any] = {
        "chat_id": message.chat.id,
        "user_id": sender.id if sender else None,
        "username": getattr(sender, "username", None) or "",
        "first_name": getattr(sender, "first_name", None) or "",
        "last_name": getattr(sender, "last_name", None) or "",
        "message_id": message.message_id,
        "chat_type": message.chat.type,
    }
    kind = classify_message(message)
    metadata["message_type"] = kind
    caption = getattr(message, "caption", None) or ""

    if kind == "command":
        content = message.text
        metadata["command"], metadata["command_args"] = _command_parts(message.text)
    elif kind == "text":
        content = message.text
    elif kind == "photo":
        photo = message.photo[-1]
        content = f"[Photo] FileID: {photo.file_id}, Width: {photo.width}, Height: {photo.height}"
        metadata.update(
            photo_file_id=photo.file_id,
            photo_width=photo.width,
            photo_height=photo.height,
            photo_file_size=photo.file_size,
        )
    elif kind == "document":
        doc = message.document
        content = f"[Document] FileID: {doc.file_id}, FileName: {doc.file_name}, FileSize: {doc.file_size}"
        metadata.update(
            document_file_id=doc.file_id,
            document_file_name=doc.file_name,
            document_file_size=doc.file_size,
            document_mime_type=doc.mime_type,
        )
    elif kind == "audio":
        audio = message.audio
        content = f"[Audio] FileID: {audio.file_id}, Duration: {_seconds(audio.duration)}s"
        metadata.update(
            audio_file_id=audio.file_id,
            audio_duration=_seconds(audio.duration),
            audio_file_size=audio.file_size,
            audio_mime_type=audio.mime_type,
            audio_performer=audio.performer,
            audio_title=audio.title,
        )
    elif kind == "voice":
        voice = message.voice
        content = f"[Voice] FileID: {voice.file_id}, Duration: {_seconds(voice.duration)}s"
        metadata.update(
            voice_file_id=voice.file_id,
            voice_duration=_seconds(voice.duration),
            voice_file_size=voice.file_size,
        )
    elif kind == "video":
        video = message.video
        content = (
            f"[Video] FileID: {video.file_id}, Width: {video.width}, Height: {video.height}, "
            f"Duration: {_seconds(video.duration)}s"
        )
        metadata.update(
            video_file_id=video.file_id,
            video_width=video.width,
            video_height=video.height,
            video_duration=_seconds(video.duration),
            video_file_size=video.file_size,
            video_mime_type=video.mime_type,
        )
    elif kind == "video_note":
        note = message.video_note
        content = f"[VideoNote] FileID: {note.file_id}, Duration: {_seconds(note.duration)}s, Length: {note.length}"
        metadata.update(
            video_note_file_id=note.file_id,
            video_note_duration=_seconds(note.duration),
            video_note_length=note.length,
            video_note_file_size=note.file_size,
        )
    elif kind == "sticker":
        sticker = message.sticker
        content = f"[Sticker] FileID: {sticker.file_id}, Emoji: {sticker.emoji or ''}"
        metadata.update(
            sticker_file_id=sticker.file_id,
            sticker_emoji=sticker.emoji,
            sticker_set_name=sticker.set_name,
            sticker_width=sticker.width,
            sticker_height=sticker.height,
            sticker_is_animated=sticker.is_animated,
        )
    elif kind == "location":
        location = message.location
        content = f"[Location] Latitude: {location.latitude:.6f}, Longitude: {location.longitude:.6f}"
        metadata.update(location_latitude=location.latitude, location_longitude=location.longitude)
    elif kind == "contact":
        contact = message.contact
        content = f"[Contact] Phone: {contact.phone_number}, Name: {contact.first_name}"
        metadata.update(
            contact_phone_number=contact.phone_number,
            contact_first_name=contact.first_name,
            contact_last_name=contact.last_name,
            contact_user_id=contact.user_id,
        )
    else:
        content = "[Unsupported message type]"

    if caption and kind in {"photo", "document", "video"}:
        content += f"\nCaption: {caption}"
        metadata["caption"] = caption

    reply = getattr(message, "reply_to_message", None)
    if reply is not None:
        metadata["reply_to_message_id"] = reply.message_id
        if reply.from_user is not None:
            metadata["reply_to_user_id"] = reply.from_user.id
            metadata["reply_to_username"] = reply.from_user.username
        if getattr(reply, "text", None):
            metadata["reply_to_text"] = reply.text

    origin = getattr(message, "forward_origin", None)
    if origin is not None:
        sender_user = getattr(origin, "sender_user", None)
        if sender_user is not None:
            metadata["forward_from_user_id"] = sender_user.id
            metadata["forward_from_username"] = sender_user.username
        metadata["forward_date"] = _unix(origin.date)

    if getattr(message, "edit_date", None):
        metadata["edit_date"] = _unix(message.edit_date)

    return content, exclude_none(metadata)


def extract_callback_content(query: CallbackQuery) -> tuple[str, dict[str, Any]]:
    sender = query.from_user
    message = query.message
    metadata: dict[str, Any] = {
        "chat_id": message.chat.id if message is not None else None,
        "user_id": sender.id,
        "username": sender.username or "",
        "first_name": sender.first_name or "",
        "last_name": sender.last_name or "",
        "message_id": message.message_id if message is not None else None,
        "callback_id": query.id,
        "message_type": "callback_query",
        "chat_type": message.chat.type if message is not None else None,
        "inline_message": bool(query.inline_message_id),
    }
    return query.data or "", exclude_none(metadata)


@dataclass(frozen=True)
class TelegramConfig:
    """Telegram connector config."""

    bot_token: str
    allowed_users: set[str] = field(default_factory=set)
    allowed_chats: set[str] = field(default_factory=set)
    webhook_url: str | None = None
    webhook_listen: str = "0.0.0.0"  # noqa: S104
    webhook_port: int = 8443


class TelegramConnector(Connector):
    """Telegram connector using long polling, or a webhook when one is configured."""

    name = "telegram"

    def __init__(
        self,
        config: TelegramConfig,
        users: UserRepository,
        *,
        limiter: RateLimiter | None = None,
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        self._config = config
        self._users = users
        self._limiter = limiter or RateLimiter(RATE_LIMIT_TOKENS, RATE_LIMIT_INTERVAL)
        self._capacity = capacity
        self._incoming = MessageStream(capacity)
        self._app: Application | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def incoming(self) -> AsyncIterator[Message]:
        return self._incoming

    async def start(self) -> None:
        if self._running:
            raise ConnectorError("telegram connector is already running")
        if not self._config.bot_token:
            raise ConnectorError("telegram bot token is empty")
        logger.info(
            "telegram.connector.start allowed_users={} allowed_chats={} webhook={}",
            len(self._config.allowed_users),
            len(self._config.allowed_chats),
            bool(self._config.webhook_url),
        )
        self._app = Application.builder().token(self._config.bot_token).build()
        self._app.add_handler(TypeHandler(Update, self._on_update, block=False))
        await self._app.initialize()
        await self._app.start()
        self._running = True
        updater = self._app.updater
        if updater is None:
            return
        allowed_updates = ["message", "callback_query"]
        if self._config.webhook_url:
            await updater.start_webhook(
                listen=self._config.webhook_listen,
                port=self._config.webhook_port,
                url_path=urlparse(self._config.webhook_url).path.lstrip("/"),
                webhook_url=self._config.webhook_url,
                allowed_updates=allowed_updates,
            )
            logger.info("telegram.connector.webhook url={}", self._config.webhook_url)
        else:
            await updater.start_polling(timeout=POLL_TIMEOUT, allowed_updates=allowed_updates)
            logger.info("telegram.connector.polling timeout={}", POLL_TIMEOUT)

    async def stop(self) -> None:
        if not self._running:
            raise ConnectorError("telegram connector is not running")
        self._running = False
        self._incoming.close()
        self._incoming = MessageStream(self._capacity)
        if self._app is None:
            return
        updater = self._app.updater
        if updater is not None and updater.running:
            await updater.stop()
        if self._config.webhook_url:
            try:
                await self._app.bot.delete_webhook()
            except TelegramError:
                logger.exception("telegram.connector.delete_webhook.error")
        await self._app.stop()
        await self._app.shutdown()
        self._app = None
        logger.info("telegram.connector.stopped")

    def is_allowed(self, chat_id: int | str, user_id: int | str) -> bool:
        """A sender passes if its chat OR its user is allow-listed. Empty lists reject everyone."""
        return str(chat_id) in self._config.allowed_chats or str(user_id) in self._config.allowed_users

    async def get_user(self, channel_user_id: str) -> User | None:
        return await self._users.find_by_channel(Channel.TELEGRAM, _sender_part(channel_user_id))

    async def create_user(self, channel_user_id: str) -> User:
        user = User.new(Channel.TELEGRAM, _sender_part(channel_user_id))
        await self._users.create(user)
        logger.info("telegram.connector.user_created user_id={} telegram_id={}", user.id, user.channel_id)
        return user

    async def send_response(self, user_id: str, response: Response) -> None:
        if not self._running or self._app is None:
            raise ConnectorError("telegram connector is not running")
        chat_id = parse_chat_id(user_id)
        try:
            kind = ResponseKind(response.kind or ResponseKind.TEXT)
        except ValueError:
            raise ConnectorError(f"unsupported response type: {response.kind}") from None

        try:
            if kind == ResponseKind.TEXT:
                await self._send_text(chat_id, response)
            else:
                await self._send_media(chat_id, kind, response)
        except TelegramError as exc:
            error = translate_send_error(exc)
            logger.warning("telegram.connector.send_error chat_id={} error={}", chat_id, error)
            raise error from exc

    async def _send_text(self, chat_id: int, response: Response) -> None:
        bot = self._app.bot
        parse_mode = response.metadata.get("parse_mode", DEFAULT_PARSE_MODE)
        keyboard = build_keyboard(response.buttons)
        markdown = parse_mode == DEFAULT_PARSE_MODE

        if response.edit_target_id is not None:
            await self._limiter.acquire()
            await bot.edit_message_text(
                text=md(response.content) if markdown else response.content,
                chat_id=chat_id,
                message_id=response.edit_target_id,
                parse_mode=parse_mode or None,
                reply_markup=keyboard,
            )
            return

        # Limit applies to the raw content; each part is escaped on its own.
        parts = split_long_text(response.content)
        for index, part in enumerate(parts):
            if index:
                await asyncio.sleep(SPLIT_DELAY)
            await self._limiter.acquire()
            await bot.send_message(
                chat_id=chat_id,
                text=md(part) if markdown else part,
                parse_mode=parse_mode or None,
                reply_markup=keyboard if index == len(parts) - 1 else None,
            )

    async def _send_media(self, chat_id: int, kind: ResponseKind, response: Response) -> None:
        if not response.media:
            raise ConnectorError(f"{kind} response requires media")
        bot = self._app.bot
        keyboard = build_keyboard(response.buttons)
        await self._limiter.acquire()
        if kind == ResponseKind.STICKER:
            await bot.send_sticker(chat_id=chat_id, sticker=response.media, reply_markup=keyboard)
            return

        caption = truncate_caption(response.caption) or None
        parse_mode = response.metadata.get("parse_mode") or None
        if kind == ResponseKind.PHOTO:
            await bot.send_photo(
                chat_id=chat_id, photo=response.media, caption=caption, parse_mode=parse_mode, reply_markup=keyboard
            )
        elif kind == ResponseKind.DOCUMENT:
            await bot.send_document(
                chat_id=chat_id, document=response.media, caption=caption, parse_mode=parse_mode, reply_markup=keyboard
            )
        elif kind == ResponseKind.AUDIO:
            await bot.send_audio(
                chat_id=chat_id, audio=response.media, caption=caption, parse_mode=parse_mode, reply_markup=keyboard
            )
        elif kind == ResponseKind.VIDEO:
            await bot.send_video(
                chat_id=chat_id, video=response.media, caption=caption, parse_mode=parse_mode, reply_markup=keyboard
            )

    async def _on_update(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        try:
            if update.callback_query is not None:
                await self._handle_callback(update.callback_query)
                return
            message = update.message
            if message is None or message.from_user is None:
                return
            if not self.is_allowed(message.chat.id, message.from_user.id):
                logger.warning(
                    "telegram.connector.denied chat_id={} user_id={}", message.chat.id, message.from_user.id
                )
                return
            content, metadata = extract_message_content(message)
            await self._ingest(message.from_user.id, message.chat.id, content, metadata)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("telegram.connector.update.error update_id={}", getattr(update, "update_id", None))

    async def _handle_callback(self, query: CallbackQuery) -> None:
        chat_id = query.message.chat.id if query.message is not None else query.from_user.id
        if not self.is_allowed(chat_id, query.from_user.id):
            logger.warning("telegram.connector.denied chat_id={} user_id={}", chat_id, query.from_user.id)
            return
        await query.answer()
        content, metadata = extract_callback_content(query)
        await self._ingest(query.from_user.id, chat_id, content, metadata)

    async def _ingest(self, sender_id: int, chat_id: int, content: str, metadata: dict[str, Any]) -> None:
        channel_user_id = str(sender_id)
        user = await self.get_user(channel_user_id)
        if user is None:
            user = await self.create_user(channel_user_id)
        metadata["user_internal_id"] = user.id

        logger.info(
            "telegram.connector.inbound chat_id={} sender_id={} type={} content={}",
            chat_id,
            sender_id,
            metadata.get("message_type"),
            content[:100],
        )
        message = Message(user_id=f"{sender_id}:{chat_id}", channel_id=str(chat_id), content=content, metadata=metadata)
        if not self._incoming.offer(message):
            logger.warning("telegram.connector.drop reason=incoming channel full chat_id={}", chat_id)


def _sender_part(channel_user_id: str) -> str:
    # Router-side ids are "<user_id>:<chat_id>"; users are keyed by the Telegram user id.
    return channel_user_id.split(":", 1)[0]
