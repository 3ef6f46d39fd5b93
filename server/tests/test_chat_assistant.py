"""Chat completers, the chat pipeline and session storage."""

import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest
from app.config import settings
from app.errors import AuthorizationError, NotFoundError
from app.services import redis_client
from app.services.chat_completer import (
    ChatCompleter,
    ChatCompletionError,
    KeywordChatCompleter,
    OpenAIChatCompleter,
    build_chat_completer,
)
from app.services.chat_pipeline import ChatPipeline, fallback_reply
from app.services.chat_sessions import (
    ChatContext,
    ChatSession,
    CustomerSnapshot,
    InMemorySessionStore,
    RedisSessionStore,
    VehicleSnapshot,
    cleanup_inactive_sessions,
    generate_session_id,
)
from app.services.system_prompts import build_system_prompt, is_shop_open

TZ = ZoneInfo(settings.SHOP_TIMEZONE)


def _completion(content):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5),
    )


class FailingCompleter(ChatCompleter):
    mode = "openai"

    @property
    def configured(self):
        return True

    async def complete(self, messages, context=None):
        raise ChatCompletionError("model unavailable")


class EchoCompleter(ChatCompleter):
    """Replies after a short await, so turns on one session can overlap."""

    mode = "openai"

    @property
    def configured(self):
        return True

    async def complete(self, messages, context=None):
        await asyncio.sleep(0.01)
        return f"Re: {messages[-1]['content']}"


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the session store."""

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.locks = {}

    async def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

    async def scan_iter(self, match=None, count=None):
        prefix = match.rstrip("*")
        for key in list(self.data):
            if key.startswith(prefix):
                yield key

    def lock(self, name, timeout=None, blocking_timeout=None):
        return self.locks.setdefault(name, asyncio.Lock())


# ============================================================================
# Keyword completer
# ============================================================================


@pytest.mark.parametrize(
    "text,expected",
    [
        ("What are your hours?", "Monday-Friday 8:00 AM - 6:00 PM"),
        ("How much for an oil change?", "I'd be happy to provide pricing!"),
        ("Can I book something?", "I can help you schedule an appointment!"),
        ("Where is your address?", settings.SHOP_ADDRESS),
        ("My check engine light is on", "Our diagnostic service costs $150-200"),
        ("I drive a BMW", "We specialize in European vehicles"),
        ("hello there", f"Welcome to {settings.SHOP_NAME}!"),
    ],
)
def test_keyword_rules(text, expected):
    assert expected in KeywordChatCompleter().reply_for(text, {})


def test_keyword_rules_first_match_wins():
    # "open" (hours) comes before "price" (pricing)
    reply = KeywordChatCompleter().reply_for("Are you open and what is the price?", {})
    assert "Monday-Friday" in reply


def test_keyword_personalized_replies():
    completer = KeywordChatCompleter()
    context = {
        "customer_info": {"first_name": "Alice"},
        "appointment_info": {"status": "confirmed"},
        "vehicle_info": {"year": 2016, "make": "BMW", "model": "328i"},
    }

    assert completer.reply_for("About my appointment", context).startswith(
        "Hi Alice! I can see your confirmed appointment."
    )
    assert "For your 2016 BMW 328i" in completer.reply_for("When is my next service?", context)
    assert completer.reply_for("hello", {"customer_info": {"first_name": "Alice"}}).startswith(
        f"Welcome to {settings.SHOP_NAME}, Alice!"
    )
    assert "schedule an appointment, Alice!" in completer.reply_for(
        "I want to book", {"customer_info": {"first_name": "Alice"}}
    )


def test_keyword_completer_is_not_configured():
    completer = KeywordChatCompleter()
    assert completer.configured is False
    assert completer.mode == "fallback"


def test_build_chat_completer_selection():
    assert isinstance(build_chat_completer(settings.model_copy(update={"OPENAI_API_KEY": ""})), KeywordChatCompleter)

    openai_config = settings.model_copy(update={"OPENAI_API_KEY": "sk-test", "AZURE_OPENAI_ENDPOINT": ""})
    completer = build_chat_completer(openai_config)
    assert isinstance(completer, OpenAIChatCompleter)
    assert completer.model == settings.OPENAI_MODEL

    azure_config = settings.model_copy(
        update={
            "AZURE_OPENAI_ENDPOINT": "https://example.openai.azure.com",
            "AZURE_OPENAI_API_KEY": "azure-key",
            "AZURE_OPENAI_DEPLOYMENT_NAME": "gpt-4o-prod",
        }
    )
    assert build_chat_completer(azure_config).model == "gpt-4o-prod"


# ============================================================================
# OpenAI completer
# ============================================================================


@pytest.mark.asyncio
async def test_openai_completer_sends_system_prompt_and_parameters():
    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock())))
    client.chat.completions.create.return_value = _completion("We open at 8.")
    completer = OpenAIChatCompleter(client, model="gpt-4o", max_tokens=200, temperature=0.2)

    reply = await completer.complete(
        [{"role": "user", "content": "When do you open?"}],
        {"customer_info": {"first_name": "Alice"}},
    )

    assert reply == "We open at 8."
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o"
    assert kwargs["max_tokens"] == 200
    assert kwargs["temperature"] == 0.2
    assert kwargs["messages"][0]["role"] == "system"
    assert "Alice" in kwargs["messages"][0]["content"]
    assert kwargs["messages"][1] == {"role": "user", "content": "When do you open?"}


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [None, "", "   "])
async def test_openai_completer_rejects_empty_reply(content):
    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock())))
    client.chat.completions.create.return_value = _completion(content)

    with pytest.raises(ChatCompletionError):
        await OpenAIChatCompleter(client, model="gpt-4o").complete([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_openai_completer_wraps_client_errors():
    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock())))
    client.chat.completions.create.side_effect = RuntimeError("502 Bad Gateway")

    with pytest.raises(ChatCompletionError, match="502"):
        await OpenAIChatCompleter(client, model="gpt-4o").complete([{"role": "user", "content": "hi"}])


# ============================================================================
# System prompt
# ============================================================================


def test_shop_hours():
    assert is_shop_open(datetime(2030, 1, 14, 9, 0, tzinfo=TZ)) is True  # Monday
    assert is_shop_open(datetime(2030, 1, 14, 18, 0, tzinfo=TZ)) is False
    assert is_shop_open(datetime(2030, 1, 19, 15, 59, tzinfo=TZ)) is True  # Saturday
    assert is_shop_open(datetime(2030, 1, 19, 16, 0, tzinfo=TZ)) is False
    assert is_shop_open(datetime(2030, 1, 20, 12, 0, tzinfo=TZ)) is False  # Sunday


def test_system_prompt_includes_context_and_status():
    prompt = build_system_prompt(
        {"vehicle_info": {"year": 2016, "make": "BMW", "model": "328i"}},
        now=datetime(2030, 1, 20, 12, 0, tzinfo=TZ),
    )
    assert settings.SHOP_PHONE in prompt
    assert "CLOSED" in prompt
    assert "Vehicle: 2016 BMW 328i" in prompt


# ============================================================================
# Context and sessions
# ============================================================================


def test_context_merge_overrides_present_entries_only():
    base = ChatContext(
        customer_info=CustomerSnapshot(first_name="Alice"),
        vehicle_info=VehicleSnapshot(make="Honda"),
    )
    merged = base.merged_with(ChatContext(vehicle_info=VehicleSnapshot(make="BMW")))

    assert merged.customer_info.first_name == "Alice"
    assert merged.vehicle_info.make == "BMW"
    assert merged.appointment_info is None


def test_session_id_format():
    session_id = generate_session_id()
    prefix, millis, suffix = session_id.split("_")
    assert prefix == "session"
    assert millis.isdigit()
    assert len(suffix) == 9 and suffix.isalnum() and suffix == suffix.lower()


def test_recent_conversation_window_and_roles():
    session = ChatSession()
    for i in range(12):
        session.add_message(f"q{i}", "user")
        session.add_message(f"a{i}", "ai")

    conversation = session.recent_conversation(10)
    assert len(conversation) == 10
    assert conversation[0] == {"role": "user", "content": "q7"}
    assert conversation[-1] == {"role": "assistant", "content": "a11"}


@pytest.mark.asyncio
async def test_cleanup_removes_only_old_inactive_sessions():
    store = InMemorySessionStore()
    now = datetime.now(timezone.utc)
    old = now - timedelta(seconds=settings.CHAT_SESSION_IDLE_SECONDS + 60)

    stale = ChatSession(is_active=False, updated_at=old)
    active_old = ChatSession(is_active=True, updated_at=old)
    fresh_inactive = ChatSession(is_active=False, updated_at=now)
    for session in (stale, active_old, fresh_inactive):
        await store.save(session)

    cleaned, remaining = await cleanup_inactive_sessions(store, now=now)

    assert (cleaned, remaining) == (1, 2)
    assert await store.get(stale.id) is None
    assert await store.get(active_old.id) is not None
    assert await store.get(fresh_inactive.id) is not None


@pytest.mark.asyncio
async def test_redis_store_round_trip(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(redis_client, "redis_client", fake)
    store = RedisSessionStore(ttl=120)

    session = ChatSession(user_id=7)
    session.add_message("What are your hours?", "user")
    assert await store.save(session) is True

    key = f"{redis_client.CHAT_SESSION_PREFIX}{session.id}"
    assert fake.ttls[key] == 120

    loaded = await store.get(session.id)
    assert loaded.user_id == 7
    assert loaded.messages[0].message == "What are your hours?"
    assert [s.id for s in await store.all_sessions()] == [session.id]

    assert await store.delete(session.id) is True
    assert await store.get(session.id) is None


@pytest.mark.asyncio
async def test_redis_store_without_connection(monkeypatch):
    monkeypatch.setattr(redis_client, "redis_client", None)
    store = RedisSessionStore()

    assert await store.save(ChatSession()) is False
    assert await store.get("missing") is None
    assert await store.all_sessions() == []


@pytest.mark.asyncio
async def test_redis_store_appends_turns_under_a_shared_lock(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(redis_client, "redis_client", fake)
    store = RedisSessionStore()

    session = ChatSession()
    session.add_message("hello", "user")
    await store.save(session)

    turn = ChatSession(id=session.id)
    turn.add_message("What are your hours?", "user")
    saved = await store.append_turn(session, turn.messages, touch=True)

    assert [m.message for m in saved.messages] == ["hello", "What are your hours?"]
    assert f"{redis_client.CHAT_SESSION_LOCK_PREFIX}{session.id}" in fake.locks

    monkeypatch.setattr(redis_client, "redis_client", None)
    assert isinstance(store.lock(session.id), asyncio.Lock)


# ============================================================================
# Pipeline
# ============================================================================


@pytest.mark.asyncio
async def test_anonymous_turn_creates_session(db_session, chat_pipeline, session_store):
    session, reply, generated = await chat_pipeline.handle_message(db_session, "What are your hours?")

    assert generated is True
    assert "Monday-Friday" in reply.message
    assert session.user_id is None
    stored = await session_store.get(session.id)
    assert [m.sender for m in stored.messages] == ["user", "ai"]


@pytest.mark.asyncio
async def test_turn_enriches_context_from_appointment_hint(db_session, chat_pipeline, customer, vehicle, oil_change, next_week):
    from app.services import appointment_lifecycle

    appointment = await appointment_lifecycle.create_appointment(
        db_session, customer, vehicle.id, [oil_change.id], next_week, "10:00"
    )

    session, reply, _ = await chat_pipeline.handle_message(
        db_session, "About my appointment", actor=customer, appointment_id=appointment.id
    )

    assert reply.message.startswith("Hi Alice! I can see your scheduled appointment.")
    assert session.user_id == customer.id
    assert session.context.customer_info.first_name == "Alice"
    assert session.context.appointment_info.id == appointment.id
    assert session.context.vehicle_info.make == "Honda"


@pytest.mark.asyncio
async def test_turn_ignores_hints_the_user_cannot_access(db_session, chat_pipeline, other_customer, vehicle):
    session, _, _ = await chat_pipeline.handle_message(
        db_session, "hello", actor=other_customer, vehicle_id=vehicle.id
    )
    assert session.context.vehicle_info is None
    assert session.context.customer_info.first_name == "Bob"


@pytest.mark.asyncio
async def test_context_persists_across_turns(db_session, chat_pipeline, customer, vehicle):
    session, _, _ = await chat_pipeline.handle_message(db_session, "hi", actor=customer, vehicle_id=vehicle.id)
    session, reply, _ = await chat_pipeline.handle_message(
        db_session, "When is my next service due?", actor=customer, session_id=session.id
    )

    assert session.context.vehicle_info.make == "Honda"
    assert "For your 2021 Honda Accord" in reply.message
    assert len(session.messages) == 4


@pytest.mark.asyncio
async def test_completer_failure_yields_fallback(db_session, customer, session_store):
    pipeline = ChatPipeline(FailingCompleter(), session_store)
    session, reply, generated = await pipeline.handle_message(db_session, "hello", actor=customer)

    assert generated is False
    assert reply.message == fallback_reply()
    assert settings.SHOP_PHONE in reply.message
    stored = await session_store.get(session.id)
    assert stored.messages[-1].message == fallback_reply()
    # Context is only merged after a successful reply
    assert stored.context.customer_info is None


@pytest.mark.asyncio
async def test_history_access_rules(db_session, chat_pipeline, customer, other_customer):
    session, _, _ = await chat_pipeline.handle_message(db_session, "hello", actor=customer)

    assert (await chat_pipeline.get_history(session.id, customer)).id == session.id
    with pytest.raises(AuthorizationError, match="Access denied to this chat session"):
        await chat_pipeline.get_history(session.id, other_customer)
    with pytest.raises(NotFoundError, match="Chat session not found"):
        await chat_pipeline.get_history("session_0_missing", customer)


@pytest.mark.asyncio
async def test_closed_session_is_cleaned_after_idle_threshold(db_session, chat_pipeline, session_store):
    session, _, _ = await chat_pipeline.handle_message(db_session, "hello")
    await chat_pipeline.close_session(session.id)

    assert await chat_pipeline.cleanup() == (0, 1)
    later = datetime.now(timezone.utc) + timedelta(seconds=settings.CHAT_SESSION_IDLE_SECONDS + 1)
    assert await chat_pipeline.cleanup(now=later) == (1, 0)
    assert await session_store.get(session.id) is None


@pytest.mark.asyncio
async def test_status_reports_mode_and_active_sessions(db_session, chat_pipeline):
    await chat_pipeline.handle_message(db_session, "hello")
    status = await chat_pipeline.status()

    assert status == {
        "configured": False,
        "mode": "fallback",
        "sessionBackend": "memory",
        "activeSessions": 1,
    }


@pytest.mark.asyncio
async def test_overlapping_turns_keep_every_message(db_session, session_store):
    pipeline = ChatPipeline(EchoCompleter(), session_store)
    session, _, _ = await pipeline.handle_message(db_session, "first")

    await asyncio.gather(
        pipeline.handle_message(db_session, "second", session_id=session.id),
        pipeline.handle_message(db_session, "third", session_id=session.id),
    )

    texts = [m.message for m in (await session_store.get(session.id)).messages]
    assert len(texts) == 6
    for text in ("first", "second", "third"):
        assert texts[texts.index(text) + 1] == f"Re: {text}"


@pytest.mark.asyncio
async def test_turn_ignores_hint_for_inactive_appointment(
    db_session, chat_pipeline, customer, vehicle, oil_change, next_week
):
    from app.services import appointment_lifecycle

    appointment = await appointment_lifecycle.create_appointment(
        db_session, customer, vehicle.id, [oil_change.id], next_week, "10:00"
    )
    appointment.is_active = False
    await db_session.commit()

    session, _, _ = await chat_pipeline.handle_message(
        db_session, "About my appointment", actor=customer, appointment_id=appointment.id
    )

    assert session.context.appointment_info is None
    assert session.context.vehicle_info is None


@pytest.mark.asyncio
async def test_anonymous_turn_ignores_record_hints(db_session, chat_pipeline, customer, vehicle, oil_change, next_week):
    from app.services import appointment_lifecycle

    appointment = await appointment_lifecycle.create_appointment(
        db_session, customer, vehicle.id, [oil_change.id], next_week, "10:00"
    )

    session, _, _ = await chat_pipeline.handle_message(
        db_session, "About my appointment", appointment_id=appointment.id
    )

    assert session.context.appointment_info is None
    assert session.context.vehicle_info is None
    assert session.context.customer_info is None
