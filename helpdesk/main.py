from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from helpdesk.api.routes import agents, ping, session, tickets
from helpdesk.core.config import Settings, get_settings
from helpdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from helpdesk.tickets.queue import StatsOptions
from helpdesk.tickets.repository import TicketRepository
from helpdesk.tickets.service import HelpdeskService
from helpdesk.tickets.state import TicketStateMachine
from helpdesk.tickets.triage import LLMTriage


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


def build_triage(settings: Settings) -> LLMTriage | None:
    if not settings.triage_enabled or not settings.triage_api_key:
        return None
    return LLMTriage(
        api_key=settings.triage_api_key,
        model=settings.triage_model,
        base_url=settings.triage_base_url,
        timeout=settings.triage_timeout_seconds,
    )


def build_service(settings: Settings, repository: TicketRepository) -> HelpdeskService:
    return HelpdeskService(
        store=repository,
        triage=build_triage(settings),
        state_machine=TicketStateMachine(strict=settings.strict_transitions),
        stats_options=StatsOptions(
            default_wait_minutes=settings.default_wait_minutes,
            min_wait_minutes=settings.min_wait_minutes,
            tz=settings.tzinfo(),
        ),
        admins=settings.admin_identities,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    app.state.helpdesk_service = None
    db_engine = None
    try:
        db_engine = create_async_engine(_to_asyncpg_dsn(settings.database_dsn), future=True)
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        repository = TicketRepository(session_factory, engine=db_engine)
        await repository.ensure_schema()
        service = build_service(settings, repository)
        seeded = await service.bootstrap_agents(settings.bootstrap_agents)
        if seeded:
            logger.info("Seeded %d agent identities", seeded)
        app.state.helpdesk_service = service
    except Exception:  # pragma: no cover - service initialisation best effort
        logger.exception("Helpdesk store could not be initialised")
        if db_engine is not None:
            await db_engine.dispose()
            db_engine = None
    try:
        yield
    finally:
        if db_engine is not None:
            await db_engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(session.router)
    app.include_router(tickets.router)
    app.include_router(agents.router)
    return app


app = create_app()
