"""Parquet archive of raw validator snapshots, partitioned by epoch.

Every pipeline run can drop the snapshots it ingested into columnar files so
runs can be audited or replayed without touching the RPC provider again.

Storage structure:
    {base}/{epoch}/raw/{source}_{date}.parquet

Example:
    archive/712/raw/snapshots_2024-12-20.parquet

All I/O runs through asyncio.to_thread so the event loop never blocks.
"""

import asyncio
import logging
from dataclasses import asdict
from datetime import date, datetime
from pathlib import Path
from typing import Iterable

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from stakescope.models import ValidatorSnapshot

logger = logging.getLogger(__name__)

SNAPSHOT_SOURCE = "snapshots"


class ParquetStore:
    """Async Parquet archive for raw snapshots.

    Args:
        base_path: Root directory for the archive. Defaults to 'archive/'.
    """

    def __init__(self, base_path: str | Path = "archive") -> None:
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_file_path(self, epoch: int, source: str, dt: date) -> Path:
        return self.base_path / str(epoch) / "raw" / f"{source}_{dt.isoformat()}.parquet"

    async def write(
        self,
        epoch: int,
        source: str,
        dt: date,
        data: pd.DataFrame,
        overwrite: bool = False,
    ) -> Path:
        """Write a DataFrame to the archive.

        Raises:
            FileExistsError: If the file exists and overwrite=False
            ValueError: If data is empty
        """
        if data.empty:
            raise ValueError("Cannot archive an empty DataFrame")

        file_path = self._get_file_path(epoch, source, dt)
        if file_path.exists() and not overwrite:
            raise FileExistsError(f"Archive file already exists: {file_path}")

        file_path.parent.mkdir(parents=True, exist_ok=True)

        def _write() -> None:
            table = pa.Table.from_pandas(data, preserve_index=False)
            pq.write_table(table, file_path, compression="snappy", write_statistics=True)

        await asyncio.to_thread(_write)
        return file_path

    async def read(self, epoch: int, source: str, dt: date) -> pd.DataFrame | None:
        """Read one archived file, or None if missing or unreadable."""
        file_path = self._get_file_path(epoch, source, dt)
        if not file_path.exists():
            return None

        def _read() -> pd.DataFrame | None:
            try:
                return pq.read_table(file_path).to_pandas()
            except Exception as e:
                logger.warning("Failed to read archive file %s: %s", file_path, e)
                return None

        return await asyncio.to_thread(_read)

    async def write_snapshots(
        self,
        epoch: int,
        snapshots: Iterable[ValidatorSnapshot],
        dt: date | None = None,
    ) -> Path | None:
        """Archive one run's snapshots. Returns None when there is nothing to write."""
        rows = []
        for snapshot in snapshots:
            row = asdict(snapshot)
            row.pop("epoch_credits", None)  # nested lists; not needed for replay
            rows.append(row)
        if not rows:
            return None
        return await self.write(
            epoch, SNAPSHOT_SOURCE, dt or date.today(), pd.DataFrame(rows), overwrite=True
        )

    async def read_snapshots(self, epoch: int, dt: date) -> list[ValidatorSnapshot]:
        df = await self.read(epoch, SNAPSHOT_SOURCE, dt)
        if df is None:
            return []
        df = df.astype(object).where(pd.notna(df), None)
        return [ValidatorSnapshot.from_record(record) for record in df.to_dict(orient="records")]

    async def list_epochs(self) -> list[int]:
        """Epochs that have at least one archived file, ascending."""

        def _list() -> list[int]:
            epochs = []
            for child in self.base_path.iterdir():
                if child.is_dir() and child.name.isdigit() and any((child / "raw").glob("*.parquet")):
                    epochs.append(int(child.name))
            return sorted(epochs)

        return await asyncio.to_thread(_list)

    async def list_dates(self, epoch: int, source: str = SNAPSHOT_SOURCE) -> list[date]:
        raw_dir = self.base_path / str(epoch) / "raw"
        if not raw_dir.exists():
            return []

        def _list() -> list[date]:
            dates = []
            for file_path in raw_dir.glob(f"{source}_*.parquet"):
                try:
                    date_str = file_path.stem.rsplit("_", 1)[1]
                    dates.append(datetime.strptime(date_str, "%Y-%m-%d").date())
                except (ValueError, IndexError):
                    continue
            return sorted(dates)

        return await asyncio.to_thread(_list)
