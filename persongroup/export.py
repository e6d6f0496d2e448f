"""Group table export (CSV or Parquet)."""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from persongroup.io_utils import ensure_dir
from persongroup.resolution.workflows import group_summaries
from persongroup.store import Database

LOGGER = logging.getLogger("persongroup.export")

GROUP_EXPORT_COLUMNS = [
    "group_id",
    "label",
    "representative_capture_id",
    "representative_image_ref",
    "member_count",
    "clarity",
    "created_at",
    "updated_at",
]


def groups_frame(db: Database) -> pd.DataFrame:
    return pd.DataFrame(group_summaries(db), columns=GROUP_EXPORT_COLUMNS)


def export_groups(db: Database, output_path: Path) -> Path:
    """Write the group table; the format follows the file suffix (.parquet or .csv)."""
    df = groups_frame(db)
    ensure_dir(output_path.parent)
    if output_path.suffix.lower() == ".parquet":
        df.to_parquet(output_path, index=False)
    else:
        df.to_csv(output_path, index=False)
    LOGGER.info("Exported %d group(s) to %s", len(df), output_path)
    return output_path
