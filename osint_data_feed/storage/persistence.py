from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

import pandas as pd

from ..records import RecordBatch


@dataclass(frozen=True)
class PersistConfig:
    root_dir: Path
    dataset_slug: str

    def dataset_dir(self) -> Path:
        d = self.root_dir / self.dataset_slug
        d.mkdir(parents=True, exist_ok=True)
        return d


def now_utc_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%SZ")


def records_to_dataframe(records: RecordBatch, columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Records as a DataFrame; ``columns`` fixes the column order (missing ones become empty)."""
    df = pd.DataFrame.from_records(records)
    if columns is not None:
        df = df.reindex(columns=list(columns))
    return df


def write_raw_snapshot(
    cfg: PersistConfig,
    run_id: str,
    records: RecordBatch,
    columns: Optional[Sequence[str]] = None,
) -> Path:
    out = cfg.dataset_dir() / f"{run_id}_api_pull.csv"
    records_to_dataframe(records, columns).to_csv(out, index=False)
    return out


def write_screenshot(data_dir: Path, uuid: str, data: bytes) -> Path:
    out_dir = Path(data_dir) / "screenshots"
    out_dir.mkdir(parents=True, exist_ok=True)
    out = out_dir / f"{uuid}.png"
    out.write_bytes(data)
    return out
