"""
Local snapshot fallback (JSON or CSV).

Used as the last aggregator tier when nothing online answers. JSON payloads go
through an optional loader (e.g. a rate card loader); without one the file
must hold observation-shaped records. CSV files are read with pandas.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from core.exceptions import PayloadFormatError, SourceUnavailableError
from ingestion.base import SourceAdapter
from ingestion.context import RunContext
from schemas.observation import Observation

logger = logging.getLogger(__name__)

SnapshotLoader = Callable[[Any], List[Observation]]

LOCATION_COLUMNS = ("region", "city", "area")


class StaticSnapshotAdapter(SourceAdapter):
    """Read observations from a file shipped with the deployment"""

    def __init__(
        self,
        name: str,
        path: str,
        source: Optional[str] = None,
        loader: Optional[SnapshotLoader] = None,
    ):
        super().__init__(name=name, source=source)
        self.path = Path(path)
        self.loader = loader

    def can_run(self) -> bool:
        return self.path.is_file()

    async def fetch(self, ctx: RunContext) -> List[Observation]:
        if not self.can_run():
            raise SourceUnavailableError(
                f"Snapshot file not found: {self.path}",
                context={"provider": self.name, "path": str(self.path)}
            )

        logger.info(f"Reading snapshot from {self.path}")
        fetched_at = datetime.now(timezone.utc)

        if self.path.suffix.lower() == ".csv":
            records = await asyncio.to_thread(self._read_csv)
            return self._from_records(records, fetched_at, ctx)

        payload = await asyncio.to_thread(self._read_json)
        if self.loader is not None:
            return self.loader(payload)

        if isinstance(payload, dict):
            payload = payload.get("observations", payload.get("data", []))
        if not isinstance(payload, list):
            raise PayloadFormatError(
                "Snapshot holds no observation list",
                context={"provider": self.name, "path": str(self.path)}
            )
        return self._from_records(payload, fetched_at, ctx)

    def _read_json(self) -> Any:
        try:
            with self.path.open(encoding="utf-8") as f:
                return json.load(f)
        except ValueError as e:
            raise PayloadFormatError(
                "Snapshot is not valid JSON",
                context={"provider": self.name, "path": str(self.path)},
                original_exception=e
            )

    def _read_csv(self) -> List[Dict[str, Any]]:
        df = pd.read_csv(self.path)

        # Normalize column names (strip whitespace, lowercase)
        df.columns = df.columns.str.strip().str.lower().str.replace(" ", "_")
        df = df.astype(object).where(df.notna(), None)

        records = []
        for row in df.to_dict(orient="records"):
            location = {col: row.pop(col) for col in LOCATION_COLUMNS if col in row}
            if location:
                row["location"] = location
            records.append(row)

        logger.info(f"Read {len(records)} records from CSV")
        return records

    def _from_records(
        self,
        records: List[Any],
        fetched_at: datetime,
        ctx: RunContext,
    ) -> List[Observation]:
        observations = []
        for position, record in enumerate(records):
            if not isinstance(record, dict):
                ctx.report_issue(f"{self.name}: snapshot row {position} is not an object")
                continue
            payload = {k: v for k, v in record.items() if v is not None}
            payload.setdefault("source", self.source)
            payload.setdefault("recorded_at", fetched_at)
            try:
                observations.append(Observation.model_validate(payload))
            except ValueError as e:
                ctx.report_issue(f"{self.name}: skipped snapshot row {position}: {e}")
        return observations
