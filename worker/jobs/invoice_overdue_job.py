"""Overdue invoice job."""

import logging
from datetime import date
from typing import Optional

from app.services.invoices import mark_overdue_invoices
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from worker.config import settings

logger = logging.getLogger(__name__)


async def mark_overdue_invoices_job(
    session_maker: Optional[async_sessionmaker] = None,
    today: Optional[date] = None,
) -> int:
    """
    Flag sent invoices whose due date has passed as overdue.

    A database engine is created for the run unless ``session_maker`` is given.
    """
    logger.info("Running overdue invoice job...")

    engine = None
    if session_maker is None:
        engine = create_async_engine(settings.DATABASE_URL)
        session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    marked = 0
    try:
        async with session_maker() as db:
            marked = await mark_overdue_invoices(db, today=today)
    except Exception as e:
        logger.error(f"Error in overdue invoice job: {e}")
    finally:
        if engine is not None:
            await engine.dispose()

    logger.info(f"Overdue invoice job completed ({marked} invoices marked overdue)")
    return marked
