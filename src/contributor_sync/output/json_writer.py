"""JSON export of sync reports."""

import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel

from contributor_sync.models.report import BatchReport, SyncReport


def serialize_for_json(obj: Any) -> Any:
    """Recursively turn models, enums and timestamps into plain JSON values."""
    if isinstance(obj, BaseModel):
        return serialize_for_json(obj.model_dump())
    if is_dataclass(obj) and not isinstance(obj, type):
        return serialize_for_json(asdict(obj))
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(key): serialize_for_json(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [serialize_for_json(item) for item in obj]
    return obj


def build_sync_report(report: SyncReport) -> dict[str, Any]:
    """Flatten a SyncReport, adding the derived fields model_dump leaves out."""
    data = serialize_for_json(report)
    data["repository"] = str(report.repository)
    data["failed_count"] = report.failed_count
    data["duration_seconds"] = report.duration_seconds
    data["exit_status"] = int(report.exit_status)
    return data


def build_batch_report(batch: BatchReport) -> dict[str, Any]:
    return {
        "generated_at": datetime.now().isoformat(),
        "exit_status": int(batch.exit_status),
        "total_contributors": batch.total_contributors,
        "succeeded": batch.succeeded,
        "failed_contributors": batch.failed_contributors,
        "region_tally": batch.region_tally,
        "budget_exhausted": batch.budget_exhausted,
        "cancelled": batch.cancelled,
        "repositories": [build_sync_report(r) for r in batch.reports],
        "failed_repositories": serialize_for_json(batch.failed_repositories),
        "skipped_repositories": [str(ref) for ref in batch.skipped_repositories],
    }


def default_report_path(name: str = "sync", directory: Path = Path("output")) -> Path:
    """``output/<name>_<timestamp>.json`` with path-unsafe characters replaced."""
    safe_name = _safe_filename(name)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return directory / f"{safe_name}_{stamp}.json"


def _safe_filename(name: str) -> str:
    return "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in name)


def write_json_report(
    report: dict[str, Any],
    output_path: Optional[Path] = None,
    name: Optional[str] = None,
) -> Path:
    """Write a report dictionary as indented UTF-8 JSON.

    Args:
        report: Output of build_sync_report or build_batch_report
        output_path: Target file; defaults to a timestamped file under ``output/``
        name: Basename for the default filename

    Returns:
        Path to written file
    """
    path = Path(output_path) if output_path is not None else default_report_path(name or "sync")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(report, indent=2, ensure_ascii=False, default=str) + "\n",
        encoding="utf-8",
    )
    return path
