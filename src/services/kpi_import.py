"""CSV import of KPI rows for bulk upload.

Expected columns: ``period``, one column per metric, at least one user
identifier column (``user_id``, ``employee_id``, ``email`` or ``name``) and
an optional ``comments`` column. Headers are matched case-insensitively with
spaces treated as underscores, so ``Employee ID`` reads as ``employee_id``.
Metric values are passed through unchanged so that range errors surface per
row from the KPI service.
"""

import logging
from pathlib import Path
from typing import Any

import pandas as pd

from src.db.models import KPIMetric
from src.schemas.kpi import USER_IDENTIFIERS
from src.services.errors import InvalidKPIInputError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("period", *(metric.value for metric in KPIMetric))


def _column_name(header: Any) -> str:
    return str(header).strip().lower().replace(" ", "_")


def _text(value: Any) -> str | None:
    if value is None or pd.isna(value):
        return None
    return str(value).strip() or None


def frame_to_rows(frame: pd.DataFrame) -> list[dict[str, Any]]:
    """Convert a KPI DataFrame into bulk-submit rows.

    Args:
        frame: One row per KPI submission.

    Returns:
        list[dict]: Rows with the identifier columns present, ``period``,
            ``inputs`` and ``comments``.

    Raises:
        InvalidKPIInputError: If a required column or every identifier
            column is missing.
    """
    frame = frame.rename(columns=_column_name)
    missing = [column for column in REQUIRED_COLUMNS if column not in frame.columns]
    if missing:
        raise InvalidKPIInputError(f"CSV is missing columns: {', '.join(missing)}")
    identifiers = [column for column in USER_IDENTIFIERS if column in frame.columns]
    if not identifiers:
        raise InvalidKPIInputError(f"CSV needs one of the columns: {', '.join(USER_IDENTIFIERS)}")

    rows: list[dict[str, Any]] = []
    for record in frame.to_dict(orient="records"):
        inputs = {}
        for metric in KPIMetric:
            value = record[metric.value]
            # Blank cells stay missing so validation reports them per row
            if pd.isna(value):
                continue
            inputs[metric.value] = value.item() if hasattr(value, "item") else value
        row: dict[str, Any] = {column: _text(record[column]) for column in identifiers}
        row.update(
            {
                "period": str(record["period"]).strip(),
                "inputs": inputs,
                "comments": _text(record.get("comments")),
            }
        )
        rows.append(row)
    return rows


def read_kpi_csv(path: Path) -> list[dict[str, Any]]:
    """Read a KPI CSV file into bulk-submit rows."""
    headers = pd.read_csv(path, nrows=0).columns
    text_columns = {*USER_IDENTIFIERS, "period", "comments"}
    frame = pd.read_csv(path, dtype={header: str for header in headers if _column_name(header) in text_columns})
    logger.info("Read %d KPI rows from %s", len(frame), path)
    return frame_to_rows(frame)
