import logging
from datetime import datetime, timezone

from potoken_service.config.database import DEFAULT_DATABASE_URL, create_session_factory
from potoken_service.models import AttemptLog, Base

logger = logging.getLogger(__name__)


class AttemptHistory:
    """
    Coordinator listener that records every finished attempt in SQLite.
    """

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL):
        self.database_url = database_url
        self.engine, self.session_factory = create_session_factory(database_url)

    async def init(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Attempt history stored in {self.database_url}")

    async def attempt_finished(self, outcome) -> None:
        entry = AttemptLog(
            trigger=outcome.trigger,
            status="success" if outcome.succeeded else "failure",
            error=str(outcome.error) if outcome.error is not None else None,
            token_length=len(outcome.record.credential_token) if outcome.record else None,
            started_at=datetime.fromtimestamp(outcome.started_at, tz=timezone.utc),
            finished_at=datetime.fromtimestamp(outcome.finished_at, tz=timezone.utc),
        )
        async with self.session_factory() as session:
            session.add(entry)
            await session.commit()

    async def close(self):
        await self.engine.dispose()
