import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import async_sessionmaker

from turnchain.config import Settings, settings as default_settings
from turnchain.database import async_session, init_db
from turnchain.game.game_manager import GameManager
from turnchain.game.notifier import AllowAllChecker, ContentModerationChecker, LoggingNotifier, Notifier
from turnchain.game.scheduler import DurableScheduler
from turnchain.game.season_manager import SeasonManager
from turnchain.game.turn_engine import PullMode, PushMode, TurnEngine
from turnchain.service import TurnchainService

log = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or default_settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


@dataclass
class Runtime:
    scheduler: DurableScheduler
    engine: TurnEngine
    games: GameManager
    seasons: SeasonManager
    service: TurnchainService


def create_runtime(
    session_factory: async_sessionmaker | None = None,
    notifier: Notifier | None = None,
    moderation: ContentModerationChecker | None = None,
    settings: Settings | None = None,
) -> Runtime:
    """Build the object graph and register a scheduler handler per job type."""
    settings = settings or default_settings
    session_factory = session_factory or async_session

    scheduler = DurableScheduler(
        session_factory,
        poll_interval=settings.SCHEDULER_POLL_INTERVAL,
        max_attempts=settings.SCHEDULER_MAX_ATTEMPTS,
        backoff_base=settings.SCHEDULER_BACKOFF_BASE,
        backoff_max=settings.SCHEDULER_BACKOFF_MAX,
    )
    engine = TurnEngine(
        scheduler,
        moderation or AllowAllChecker(),
        push_mode=PushMode(settings.PUSH_RULE),
        pull_mode=PullMode(),
    )
    games = GameManager(engine, scheduler)
    engine.bind_lifecycle(
        on_turn_completed=games.on_turn_completed,
        on_turn_skipped=games.on_turn_skipped,
        on_turn_rejected=games.on_game_terminated_by_moderation,
    )
    seasons = SeasonManager(games, scheduler)
    service = TurnchainService(
        session_factory, scheduler, notifier or LoggingNotifier(),
        engine, games, seasons, admin_ids=settings.ADMIN_PLAYER_IDS,
    )
    for job_type, handler in service.job_handlers().items():
        scheduler.register(job_type, handler)
    scheduler.on_failure(service.report_job_failure)
    return Runtime(scheduler, engine, games, seasons, service)


@asynccontextmanager
async def lifespan(runtime: Runtime | None = None):
    """Create tables, start the scheduler and stop it again on exit."""
    configure_logging()
    runtime = runtime or create_runtime()
    await init_db()
    await runtime.service.purge_expired_drafts()
    await runtime.scheduler.start()
    log.info("turnchain runtime started")
    try:
        yield runtime
    finally:
        await runtime.scheduler.stop()
        log.info("turnchain runtime stopped")
