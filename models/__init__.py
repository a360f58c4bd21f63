"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class and the JSON/JSONB column type
    observation: CostObservation, one row per accepted observation
    pipeline_run: PipelineRun, one row per pipeline run

Database Schema:
    All models inherit from the Base declarative class. JSON columns become
    JSONB on PostgreSQL.

Usage:
    from models import CostObservation, PipelineRun

Example:
    row = CostObservation.from_observation(observation, str(uuid.uuid4()))
    session.add(row)
    await session.commit()
"""

from models.base import Base
from models.observation import CostObservation
from models.pipeline_run import PipelineRun

__all__ = [
    "Base",
    "CostObservation",
    "PipelineRun",
]
