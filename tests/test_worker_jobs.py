"""
Unit tests for the background worker jobs and scheduler wiring.
"""

import sys
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add server directory to path
sys.path.append(str(Path(__file__).parent.parent / "server"))
sys.path.append(str(Path(__file__).parent.parent))

from app.services.chat_sessions import ChatSession, InMemorySessionStore
from worker.jobs import invoice_overdue_job
from worker.jobs.session_cleanup_job import cleanup_chat_sessions
from worker.main import build_scheduler


class BrokenStore(InMemorySessionStore):
    async def all_sessions(self):
        raise ConnectionError("redis unavailable")


def fake_session_maker(db):
    @asynccontextmanager
    async def session():
        yield db

    return session


@pytest.mark.asyncio
async def test_cleanup_removes_idle_closed_sessions():
    store = InMemorySessionStore()
    old = datetime.now(timezone.utc) - timedelta(hours=3)
    await store.save(ChatSession(is_active=False, updated_at=old))
    await store.save(ChatSession(is_active=True, updated_at=old))
    await store.save(ChatSession(is_active=False))

    assert await cleanup_chat_sessions(store) == 1
    assert len(await store.all_sessions()) == 2


@pytest.mark.asyncio
async def test_cleanup_job_logs_and_continues_on_error():
    assert await cleanup_chat_sessions(BrokenStore()) == 0


@pytest.mark.asyncio
async def test_overdue_job_delegates_to_invoice_service(monkeypatch):
    db = object()
    calls = []

    async def fake_mark(session, today=None):
        calls.append((session, today))
        return 2

    monkeypatch.setattr(invoice_overdue_job, "mark_overdue_invoices", fake_mark)

    marked = await invoice_overdue_job.mark_overdue_invoices_job(fake_session_maker(db), today=date(2030, 1, 15))

    assert marked == 2
    assert calls == [(db, date(2030, 1, 15))]


@pytest.mark.asyncio
async def test_overdue_job_returns_zero_on_error(monkeypatch):
    async def failing_mark(session, today=None):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(invoice_overdue_job, "mark_overdue_invoices", failing_mark)

    assert await invoice_overdue_job.mark_overdue_invoices_job(fake_session_maker(object())) == 0


def test_scheduler_registers_jobs():
    scheduler = build_scheduler()

    jobs = {job.id: job for job in scheduler.get_jobs()}

    assert set(jobs) == {"cleanup_chat_sessions", "mark_overdue_invoices"}
    assert jobs["cleanup_chat_sessions"].trigger.interval == timedelta(minutes=60)
    assert "hour='1'" in str(jobs["mark_overdue_invoices"].trigger)
