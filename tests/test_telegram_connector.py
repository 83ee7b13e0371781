from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any

import pytest
from telegram.error import Forbidden, RetryAfter, TelegramError
from telegramify_markdown import markdownify

import nexflow.channels.telegram as telegram_module
from nexflow.channels import Button, Response, ResponseKind
from nexflow.channels.telegram import (
    MAX_TEXT_LENGTH,
    TelegramConfig,
    TelegramConnector,
    build_keyboard,
    extract_callback_content,
    extract_message_content,
    parse_chat_id,
    split_long_text,
    translate_send_error,
    truncate_caption,
)
from nexflow.domain import Channel, InMemoryUserRepository
from nexflow.errors import (
    BotBlockedError,
    BotKickedError,
    ChatNotFoundError,
    ConnectorError,
    MessageTooLongError,
    RateLimitedError,
    UserDeactivatedError,
)


class _FakeBot:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._error = error

    async def _record(self, method: str, **kwargs: Any) -> SimpleNamespace:
        self.calls.append((method, kwargs))
        if self._error is not None:
            raise self._error
        return SimpleNamespace(message_id=len(self.calls))

    async def send_message(self, **kwargs: Any) -> SimpleNamespace:
        return await self._record("send_message", **kwargs)

    async def edit_message_text(self, **kwargs: Any) -> SimpleNamespace:
        return await self._record("edit_message_text", **kwargs)

    async def send_photo(self, **kwargs: Any) -> SimpleNamespace:
        return await self._record("send_photo", **kwargs)

    async def send_document(self, **kwargs: Any) -> SimpleNamespace:
        return await self._record("send_document", **kwargs)

    async def send_sticker(self, **kwargs: Any) -> SimpleNamespace:
        return await self._record("send_sticker", **kwargs)


class _FakeLimiter:
    def __init__(self) -> None:
        self.acquired = 0

    async def acquire(self) -> None:
        self.acquired += 1


def _connector(
    bot: _FakeBot | None = None,
    *,
    allowed_users: set[str] | None = None,
    allowed_chats: set[str] | None = None,
) -> tuple[TelegramConnector, _FakeBot, _FakeLimiter, InMemoryUserRepository]:
    users = InMemoryUserRepository()
    limiter = _FakeLimiter()
    config = TelegramConfig(
        bot_token="123:abc",  # noqa: S106
        allowed_users=allowed_users or set(),
        allowed_chats=allowed_chats or set(),
    )
    connector = TelegramConnector(config, users, limiter=limiter)
    bot = bot or _FakeBot()
    connector._app = SimpleNamespace(bot=bot)
    connector._running = True
    return connector, bot, limiter, users


def _sender(user_id: int = 42, username: str = "tester") -> SimpleNamespace:
    return SimpleNamespace(id=user_id, username=username, first_name="Test", last_name=None)


def _tg_message(**fields: Any) -> SimpleNamespace:
    base: dict[str, Any] = {
        "message_id": 7,
        "from_user": _sender(),
        "chat": SimpleNamespace(id=100, type="private"),
    }
    base.update(fields)
    return SimpleNamespace(**base)


@pytest.fixture
def split_sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []
    real_sleep = asyncio.sleep

    async def _fake_sleep(delay: float) -> None:
        recorded.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(telegram_module.asyncio, "sleep", _fake_sleep)
    return recorded


def test_split_long_text_boundaries() -> None:
    assert split_long_text("a" * MAX_TEXT_LENGTH) == ["a" * MAX_TEXT_LENGTH]
    assert split_long_text("a" * (MAX_TEXT_LENGTH + 1)) == ["a" * MAX_TEXT_LENGTH, "a"]
    assert [len(p) for p in split_long_text("a" * 5000)] == [4096, 904]
    assert split_long_text("") == [""]


def test_split_long_text_prefers_sentence_boundary_near_limit() -> None:
    text = "a" * 4090 + ". " + "b" * 20

    parts = split_long_text(text)

    assert parts == ["a" * 4090, ". " + "b" * 20]
    assert "".join(parts) == text


def test_split_long_text_ignores_boundaries_far_from_limit() -> None:
    text = "a" * 100 + "\n" + "b" * 4000

    assert split_long_text(text) == [text[:4096], text[4096:]]


def test_truncate_caption() -> None:
    assert truncate_caption("short") == "short"
    assert truncate_caption("x" * 1024) == "x" * 1024
    truncated = truncate_caption("x" * 2000)
    assert len(truncated) == 1024
    assert truncated.endswith("...")


def test_build_keyboard_lays_out_two_per_row() -> None:
    assert build_keyboard(None) is None
    assert build_keyboard([]).inline_keyboard == ()

    markup = build_keyboard([
        Button(label="Yes", payload="yes"),
        Button(label="Docs", url="https://example.com"),
        Button(label="Search", inline_query="weather"),
    ])

    rows = markup.inline_keyboard
    assert [len(row) for row in rows] == [2, 1]
    assert rows[0][0].callback_data == "yes"
    assert rows[0][1].url == "https://example.com"
    assert rows[1][0].switch_inline_query_current_chat == "weather"


def test_parse_chat_id() -> None:
    assert parse_chat_id("42:100") == 100
    assert parse_chat_id("42:-1001") == -1001
    with pytest.raises(ConnectorError, match="invalid chat ID format"):
        parse_chat_id("42")
    with pytest.raises(ConnectorError, match="invalid chat ID format"):
        parse_chat_id("1:2:3")
    with pytest.raises(ConnectorError, match="invalid chat ID: abc"):
        parse_chat_id("42:abc")


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (Forbidden("Forbidden: bot was blocked by the user"), BotBlockedError),
        (Forbidden("Forbidden: user is deactivated"), UserDeactivatedError),
        (Forbidden("Forbidden: bot was kicked from the group chat"), BotKickedError),
        (TelegramError("Bad Request: chat not found"), ChatNotFoundError),
        (TelegramError("Too Many Requests: retry later"), RateLimitedError),
        (TelegramError("Bad Request: message is too long"), MessageTooLongError),
    ],
)
def test_translate_send_error(error: TelegramError, expected: type[Exception]) -> None:
    translated = translate_send_error(error)

    assert type(translated) is expected
    assert translated.retryable is False


def test_translate_retry_after_keeps_delay() -> None:
    translated = translate_send_error(RetryAfter(5))

    assert isinstance(translated, RateLimitedError)
    assert translated.retry_after == 5


def test_translate_unknown_error_is_generic() -> None:
    translated = translate_send_error(TelegramError("Internal Server Error"))

    assert type(translated) is ConnectorError
    assert "telegram send failed" in str(translated)


@pytest.mark.parametrize(
    ("allowed_users", "allowed_chats", "chat_id", "user_id", "expected"),
    [
        ({"42"}, set(), 100, 42, True),
        (set(), {"100"}, 100, 42, True),
        ({"7"}, {"8"}, 100, 42, False),
        (set(), set(), 100, 42, False),
    ],
)
def test_allow_list(
    allowed_users: set[str], allowed_chats: set[str], chat_id: int, user_id: int, expected: bool
) -> None:
    connector, *_ = _connector(allowed_users=allowed_users, allowed_chats=allowed_chats)

    assert connector.is_allowed(chat_id, user_id) is expected


@pytest.mark.asyncio
async def test_allowed_update_is_queued_with_internal_user() -> None:
    connector, _, _, users = _connector(allowed_users={"42"})
    update = SimpleNamespace(update_id=1, callback_query=None, message=_tg_message(text="hello"))

    await connector._on_update(update, None)

    message = await asyncio.wait_for(anext(connector.incoming()), timeout=1.0)
    assert message.user_id == "42:100"
    assert message.channel_id == "100"
    assert message.content == "hello"
    user = await users.find_by_channel(Channel.TELEGRAM, "42")
    assert message.metadata["user_internal_id"] == user.id
    assert message.metadata["message_type"] == "text"
    assert await connector.get_user("42:100") == user


@pytest.mark.asyncio
async def test_denied_update_is_dropped() -> None:
    connector, _, _, users = _connector(allowed_users={"7"})
    update = SimpleNamespace(update_id=1, callback_query=None, message=_tg_message(text="hello"))

    await connector._on_update(update, None)

    assert connector.incoming().qsize() == 0
    assert await users.list() == []


@pytest.mark.asyncio
async def test_callback_query_is_answered_and_queued() -> None:
    connector, *_ = _connector(allowed_chats={"100"})
    answered: list[bool] = []

    async def _answer() -> None:
        answered.append(True)

    query = SimpleNamespace(
        id="cb-1",
        data="approve",
        from_user=_sender(),
        message=_tg_message(),
        inline_message_id=None,
        answer=_answer,
    )

    await connector._on_update(SimpleNamespace(update_id=2, callback_query=query, message=None), None)

    message = await asyncio.wait_for(anext(connector.incoming()), timeout=1.0)
    assert answered == [True]
    assert message.content == "approve"
    assert message.metadata["message_type"] == "callback_query"
    assert message.metadata["callback_id"] == "cb-1"
    assert message.metadata["inline_message"] is False


def test_extract_command() -> None:
    content, metadata = extract_message_content(_tg_message(text="/start@nexbot now please"))

    assert content == "/start@nexbot now please"
    assert metadata["message_type"] == "command"
    assert metadata["command"] == "start"
    assert metadata["command_args"] == "now please"
    assert "last_name" in metadata
    assert metadata["last_name"] == ""


def test_extract_photo_with_caption_uses_largest_size() -> None:
    photo = [
        SimpleNamespace(file_id="small", width=90, height=90, file_size=100),
        SimpleNamespace(file_id="big", width=800, height=600, file_size=9000),
    ]

    content, metadata = extract_message_content(_tg_message(photo=photo, caption="sunset"))

    assert content == "[Photo] FileID: big, Width: 800, Height: 600\nCaption: sunset"
    assert metadata["photo_file_id"] == "big"
    assert metadata["caption"] == "sunset"


def test_extract_location_and_contact() -> None:
    location = SimpleNamespace(latitude=48.8566, longitude=2.3522)
    contact = SimpleNamespace(phone_number="+331234", first_name="Ann", last_name="Lee", user_id=9)

    location_content, _ = extract_message_content(_tg_message(location=location))
    contact_content, contact_meta = extract_message_content(_tg_message(contact=contact))

    assert location_content == "[Location] Latitude: 48.856600, Longitude: 2.352200"
    assert contact_content == "[Contact] Phone: +331234, Name: Ann"
    assert contact_meta["contact_user_id"] == 9


def test_extract_reply_and_unsupported() -> None:
    reply = SimpleNamespace(message_id=3, from_user=_sender(5, "other"), text="earlier")

    content, metadata = extract_message_content(_tg_message(reply_to_message=reply))

    assert content == "[Unsupported message type]"
    assert metadata["message_type"] == "unknown"
    assert metadata["reply_to_message_id"] == 3
    assert metadata["reply_to_user_id"] == 5
    assert metadata["reply_to_text"] == "earlier"


def test_extract_callback_without_message() -> None:
    query = SimpleNamespace(id="cb", data=None, from_user=_sender(), message=None, inline_message_id="inline-1")

    content, metadata = extract_callback_content(query)

    assert content == ""
    assert "chat_id" not in metadata
    assert metadata["inline_message"] is True


@pytest.mark.asyncio
async def test_long_reply_is_split_and_paced(split_sleeps: list[float]) -> None:
    connector, bot, limiter, _ = _connector()
    buttons = [Button(label="More", payload="more")]

    await connector.send_response(
        "42:100", Response(content="a" * 5000, buttons=buttons, metadata={"parse_mode": "HTML"})
    )

    assert [method for method, _ in bot.calls] == ["send_message", "send_message"]
    first, second = (kwargs for _, kwargs in bot.calls)
    assert (len(first["text"]), len(second["text"])) == (4096, 904)
    assert first["chat_id"] == 100
    assert first["parse_mode"] == "HTML"
    assert first["reply_markup"] is None
    assert second["reply_markup"] is not None
    assert limiter.acquired == 2
    assert split_sleeps == [0.1]


@pytest.mark.asyncio
async def test_default_parse_mode_converts_markdown() -> None:
    connector, bot, _, _ = _connector()

    await connector.send_response("42:100", Response(content="Hello **world**"))

    [(_, kwargs)] = bot.calls
    assert kwargs["parse_mode"] == "MarkdownV2"
    assert kwargs["text"] == markdownify("Hello **world**")


@pytest.mark.asyncio
async def test_default_parse_mode_keeps_exact_limit_in_one_part() -> None:
    connector, bot, _, _ = _connector()
    content = ("Sentence.." * 410)[:MAX_TEXT_LENGTH]

    await connector.send_response("42:100", Response(content=content, metadata={"message_id": "m", "session_id": "s"}))

    [(_, kwargs)] = bot.calls
    assert kwargs["text"] == markdownify(content)
    assert kwargs["parse_mode"] == "MarkdownV2"


@pytest.mark.asyncio
async def test_default_parse_mode_splits_content_before_escaping(split_sleeps: list[float]) -> None:
    connector, bot, _, _ = _connector()
    content = ("Sentence.." * 410)[: MAX_TEXT_LENGTH + 1]
    parts = split_long_text(content)

    await connector.send_response("42:100", Response(content=content))

    assert len(parts) == 2
    assert "".join(parts) == content
    assert all(len(part) <= MAX_TEXT_LENGTH for part in parts)
    assert [kwargs["text"] for _, kwargs in bot.calls] == [markdownify(part) for part in parts]
    assert split_sleeps == [0.1]


@pytest.mark.asyncio
async def test_edit_mode_edits_target_message() -> None:
    connector, bot, limiter, _ = _connector()

    await connector.send_response(
        "42:100", Response(content="updated", edit_target_id=55, metadata={"parse_mode": ""})
    )

    [(method, kwargs)] = bot.calls
    assert method == "edit_message_text"
    assert kwargs["message_id"] == 55
    assert kwargs["text"] == "updated"
    assert kwargs["parse_mode"] is None
    assert limiter.acquired == 1


@pytest.mark.asyncio
async def test_media_replies() -> None:
    connector, bot, _, _ = _connector()

    await connector.send_response(
        "42:100", Response(kind=ResponseKind.PHOTO, media="file-1", caption="c" * 2000)
    )
    await connector.send_response("42:100", Response(kind="sticker", media="sticker-1"))

    (photo_method, photo), (sticker_method, sticker) = bot.calls
    assert photo_method == "send_photo"
    assert photo["photo"] == "file-1"
    assert len(photo["caption"]) == 1024
    assert sticker_method == "send_sticker"
    assert sticker["sticker"] == "sticker-1"


@pytest.mark.asyncio
async def test_invalid_replies_are_rejected() -> None:
    connector, bot, _, _ = _connector()

    with pytest.raises(ConnectorError, match="unsupported response type: poll"):
        await connector.send_response("42:100", Response(content="x", kind="poll"))
    with pytest.raises(ConnectorError, match="photo response requires media"):
        await connector.send_response("42:100", Response(kind=ResponseKind.PHOTO))
    with pytest.raises(ConnectorError, match="invalid chat ID format"):
        await connector.send_response("42", Response(content="x"))
    assert bot.calls == []


@pytest.mark.asyncio
async def test_send_failure_is_translated() -> None:
    connector, _, _, _ = _connector(_FakeBot(error=Forbidden("Forbidden: bot was blocked by the user")))

    with pytest.raises(BotBlockedError):
        await connector.send_response("42:100", Response(content="hi", metadata={"parse_mode": "HTML"}))


@pytest.mark.asyncio
async def test_lifecycle_guards() -> None:
    users = InMemoryUserRepository()
    idle = TelegramConnector(TelegramConfig(bot_token=""), users)

    with pytest.raises(ConnectorError, match="bot token is empty"):
        await idle.start()
    with pytest.raises(ConnectorError, match="not running"):
        await idle.stop()
    with pytest.raises(ConnectorError, match="not running"):
        await idle.send_response("42:100", Response(content="hi"))

    connector, *_ = _connector()
    with pytest.raises(ConnectorError, match="already running"):
        await connector.start()


@pytest.mark.parametrize(
    ("fields", "content", "key"),
    [
        (
            {"document": SimpleNamespace(file_id="d1", file_name="a.pdf", file_size=10, mime_type="application/pdf")},
            "[Document] FileID: d1, FileName: a.pdf, FileSize: 10",
            "document_mime_type",
        ),
        (
            {"audio": SimpleNamespace(file_id="a1", duration=30, file_size=5, mime_type=None, performer="X", title="T")},
            "[Audio] FileID: a1, Duration: 30s",
            "audio_performer",
        ),
        (
            {"voice": SimpleNamespace(file_id="v1", duration=4, file_size=3)},
            "[Voice] FileID: v1, Duration: 4s",
            "voice_duration",
        ),
        (
            {"video": SimpleNamespace(file_id="m1", width=640, height=480, duration=12, file_size=9, mime_type="video/mp4")},
            "[Video] FileID: m1, Width: 640, Height: 480, Duration: 12s",
            "video_width",
        ),
        (
            {"video_note": SimpleNamespace(file_id="n1", duration=8, length=240, file_size=7)},
            "[VideoNote] FileID: n1, Duration: 8s, Length: 240",
            "video_note_length",
        ),
        (
            {
                "sticker": SimpleNamespace(
                    file_id="s1", emoji="\U0001f600", set_name="pack", width=512, height=512, is_animated=False
                )
            },
            "[Sticker] FileID: s1, Emoji: \U0001f600",
            "sticker_set_name",
        ),
    ],
)
def test_extract_media_kinds(fields: dict[str, Any], content: str, key: str) -> None:
    extracted, metadata = extract_message_content(_tg_message(**fields))

    assert extracted == content
    assert key in metadata
    assert metadata["message_type"] == next(iter(fields))


def test_extract_forward_and_edit_metadata() -> None:
    sent = datetime(2024, 1, 1, tzinfo=UTC)
    origin = SimpleNamespace(sender_user=_sender(9, "origin"), date=sent)

    _, metadata = extract_message_content(_tg_message(text="fwd", forward_origin=origin, edit_date=sent))

    assert metadata["forward_from_user_id"] == 9
    assert metadata["forward_from_username"] == "origin"
    assert metadata["forward_date"] == int(sent.timestamp())
    assert metadata["edit_date"] == int(sent.timestamp())
