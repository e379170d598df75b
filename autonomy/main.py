"""Autonomy entry point.

Builds all components and serves the REST API:
  Settings -> EventBus -> Database/PlanCache -> MessageBuffer -> AutonomousService -> App -> Uvicorn

Components are constructed up front; Starlette lifespan starts and stops
them on the same event loop as uvicorn.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import uvicorn
from starlette.applications import Starlette

from autonomy.api.rest import create_app
from autonomy.config import Settings
from autonomy.events import EventBus
from autonomy.planning import LLMDecomposer, TemplateDecomposer
from autonomy.service import AutonomousService
from autonomy.state import MessageBuffer
from autonomy.storage.cache import PlanCache
from autonomy.storage.database import Database

logger = logging.getLogger(__name__)


def create_components(settings: Settings) -> dict:
    """Construct components in dependency order. Nothing is started here.

    1. EventBus - optional (diagnostics fan-out, host notifications)
    2. Database + PlanCache - optional (plan durability)
    3. MessageBuffer - external state snapshot
    4. Decomposer - template, or LLM over a shared httpx client
    5. AutonomousService - loop + planner
    """
    bus = EventBus() if settings.event_bus_enabled else None

    database = None
    cache = None
    if settings.persistence_enabled:
        database = Database(settings)
        cache = PlanCache(database, settings.agent_id)

    buffer = MessageBuffer(settings, bus)

    http = None
    if settings.decomposer == "llm":
        http = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10, read=settings.api_timeout, write=10, pool=10),
        )
        decomposer = LLMDecomposer(settings, http)
    else:
        decomposer = TemplateDecomposer()

    service = AutonomousService(
        settings,
        state_provider=buffer.snapshot,
        decomposer=decomposer,
        bus=bus,
        cache=cache,
    )

    return {
        "bus": bus,
        "database": database,
        "cache": cache,
        "buffer": buffer,
        "http": http,
        "service": service,
    }


async def start_components(components: dict, settings: Settings) -> None:
    bus = components.get("bus")
    if bus:
        await bus.start()

    database = components.get("database")
    if database:
        await database.connect()

    if settings.autonomous_enabled:
        await components["service"].start()
    else:
        logger.info("Autonomous loop is disabled")


async def shutdown_components(components: dict) -> None:
    """Graceful shutdown in reverse order."""
    logger.info("Shutting down autonomy...")

    service = components.get("service")
    if service and service.running:
        await service.stop()

    http = components.get("http")
    if http:
        await http.aclose()

    database = components.get("database")
    if database:
        await database.disconnect()

    bus = components.get("bus")
    if bus:
        await bus.stop()

    logger.info("Autonomy shutdown complete.")


def build_app(settings: Settings) -> Starlette:
    """Build the Starlette app with component lifecycle bound to lifespan."""
    components = create_components(settings)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        app.state.components = components
        await start_components(components, settings)
        logger.info(
            "Autonomy started: %s (%s), trigger=%.1fs planning=%.1fs",
            settings.agent_name,
            settings.agent_id,
            settings.trigger_interval,
            settings.planning_interval,
        )
        yield
        await shutdown_components(components)

    return create_app(
        components["service"],
        buffer=components["buffer"],
        bus=components["bus"],
        lifespan=lifespan,
    )


def main() -> None:
    """Entry point -- parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting autonomy agent: %s (%s)", settings.agent_name, settings.agent_id)
    logger.info("Decomposer: %s", settings.decomposer)
    logger.info("Persistence: %s", settings.db_url if settings.persistence_enabled else "disabled")

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
