import logging
from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from rpm_metrics.config import PracticeConfig, Settings, settings as default_settings

logger = logging.getLogger("rpm_metrics.database")


def _engine_options(url: str, config: Settings) -> dict:
    options: dict = {
        "echo": config.database_echo,
        "pool_pre_ping": config.database_pool_pre_ping,
    }
    # SQLite drivers use a singleton/static pool that rejects sizing arguments.
    if not url.startswith("sqlite"):
        options.update(
            pool_size=config.database_pool_size,
            max_overflow=config.database_max_overflow,
            pool_timeout=30,
            pool_recycle=config.database_pool_recycle,
        )
    return options


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


class PracticeEngineRegistry:
    """Per-practice engines and session factories.

    Created once at process start and disposed at shutdown. Practices that
    share a database URL share one engine.
    """

    def __init__(self, config: Settings | None = None) -> None:
        self._settings = config or default_settings
        self._engines: dict[str, AsyncEngine] = {}
        self._sessionmakers: dict[str, async_sessionmaker[AsyncSession]] = {}
        self._practice_urls: dict[str, str] = {}

    def register(self, practice: PracticeConfig) -> None:
        url = self._settings.practice_database_url(practice)
        self._practice_urls[practice.practice_id] = url
        if url not in self._engines:
            engine = create_async_engine(url, **_engine_options(url, self._settings))
            self._engines[url] = engine
            self._sessionmakers[url] = build_sessionmaker(engine)
            logger.info("Registered engine for practice %s", practice.practice_id)

    def register_engine(self, practice_id: str, engine: AsyncEngine) -> None:
        """Attach an existing engine to a practice (used by tests and tooling)."""
        key = str(engine.url)
        self._practice_urls[practice_id] = key
        if key not in self._engines:
            self._engines[key] = engine
            self._sessionmakers[key] = build_sessionmaker(engine)

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "PracticeEngineRegistry":
        registry = cls(config)
        practices: Iterable[PracticeConfig] = registry._settings.practices
        for practice in practices:
            registry.register(practice)
        return registry

    @property
    def practice_ids(self) -> list[str]:
        return list(self._practice_urls)

    def engine(self, practice_id: str) -> AsyncEngine:
        try:
            return self._engines[self._practice_urls[practice_id]]
        except KeyError:
            raise KeyError(f"No database registered for practice {practice_id}") from None

    def sessionmaker(self, practice_id: str) -> async_sessionmaker[AsyncSession]:
        try:
            return self._sessionmakers[self._practice_urls[practice_id]]
        except KeyError:
            raise KeyError(f"No database registered for practice {practice_id}") from None

    @asynccontextmanager
    async def session(self, practice_id: str) -> AsyncGenerator[AsyncSession, None]:
        """Scoped session for one database operation."""
        async with self.sessionmaker(practice_id)() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def dispose_all(self) -> None:
        """Close database connections."""
        for engine in self._engines.values():
            await engine.dispose()
        self._engines.clear()
        self._sessionmakers.clear()
        self._practice_urls.clear()
