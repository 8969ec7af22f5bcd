"""Output handlers for Contributor Sync."""

from contributor_sync.output.console import Console
from contributor_sync.output.json_writer import (
    build_batch_report,
    build_sync_report,
    serialize_for_json,
    write_json_report,
)

__all__ = [
    "Console",
    "build_sync_report",
    "build_batch_report",
    "serialize_for_json",
    "write_json_report",
]
