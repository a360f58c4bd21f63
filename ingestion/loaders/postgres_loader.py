"""
Persist observations and run records through SQLAlchemy (PostgreSQL in production)
"""

import logging
import uuid
from datetime import datetime
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.exceptions import PersistError
from ingestion.storage import ObservationStore
from models.observation import CostObservation
from models.pipeline_run import PipelineRun
from schemas.observation import Observation, ensure_utc
from schemas.run import RunSummary

logger = logging.getLogger(__name__)


class SQLObservationStore(ObservationStore):
    """
    SQL implementation of the storage contract.

    Ensures:
    - One short-lived session per save, so a failed insert never affects
      observations saved concurrently
    - Every failure surfaces as PersistError with the observation's identity
    """

    def __init__(self, session_maker: async_sessionmaker, history_limit: int = 5000):
        self.session_maker = session_maker
        self.history_limit = history_limit

    async def save(self, observation: Observation) -> Observation:
        observation_id = observation.id or str(uuid.uuid4())
        row = CostObservation.from_observation(observation, observation_id)

        async with self.session_maker() as session:
            try:
                session.add(row)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistError(
                    "Failed to insert observation",
                    context={
                        "item_name": observation.item_name,
                        "category": observation.category,
                        "source": observation.source,
                        "table_name": CostObservation.__tablename__,
                    },
                    original_exception=e
                )

        return observation.with_updates(id=observation_id)

    async def recent_by_category(self, category: str, since: datetime) -> List[Observation]:
        async with self.session_maker() as session:
            try:
                result = await session.execute(
                    select(CostObservation)
                    .where(
                        CostObservation.category == category,
                        CostObservation.recorded_at >= ensure_utc(since),
                    )
                    .order_by(CostObservation.recorded_at.desc())
                    .limit(self.history_limit)
                )
                rows = result.scalars().all()
            except SQLAlchemyError as e:
                raise PersistError(
                    "Failed to load observation history",
                    context={
                        "category": category,
                        "operation": "SELECT",
                        "table_name": CostObservation.__tablename__,
                    },
                    original_exception=e
                )

        logger.debug(f"Loaded {len(rows)} stored {category} observations since {since.isoformat()}")
        return [row.to_observation() for row in rows]

    async def record_run(self, summary: RunSummary) -> None:
        async with self.session_maker() as session:
            try:
                session.add(PipelineRun.from_summary(summary))
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistError(
                    "Failed to record pipeline run",
                    context={
                        "provider": summary.provider,
                        "table_name": PipelineRun.__tablename__,
                    },
                    original_exception=e
                )
