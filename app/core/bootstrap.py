# app/core/bootstrap.py

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from app.application.event_system import EventSystem
from app.config.settings import AppSettings
from app.infrastructure.database.event_store_db import DbEventStore
from app.infrastructure.database.session import (
    create_engine,
    create_session_factory,
    init_schema,
)


@dataclass
class Runtime:
    engine: AsyncEngine
    event_system: EventSystem

    async def close(self) -> None:
        await self.event_system.stop()
        await self.engine.dispose()


async def build_runtime(settings: AppSettings) -> Runtime:
    """Create the engine, ensure the schema exists and wire the event system to the DB store."""
    engine = create_engine(settings.database_url, echo=settings.debug)
    await init_schema(engine)
    store = DbEventStore(
        create_session_factory(engine),
        lease_seconds=settings.lease_seconds,
    )
    return Runtime(engine=engine, event_system=EventSystem(store=store, settings=settings))
