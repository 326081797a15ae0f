"""Results writer for harvest output.

Writes batch records to disk:
- records.ndjson: One record per line, in input order
- summary.json: Aggregate statistics and run metadata
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import orjson

from .. import __version__
from ..types.results import HarvestRecord, summarize

logger = logging.getLogger(__name__)


def json_dumps(obj: Any) -> bytes:
    """Serialize object to JSON bytes using orjson."""
    return orjson.dumps(
        obj,
        option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS,
        default=_json_default,
    )


def ndjson_dumps(obj: Any) -> bytes:
    """Serialize object to NDJSON bytes (no indent)."""
    return orjson.dumps(obj, default=_json_default)


def _json_default(obj: Any) -> Any:
    """Default serializer for non-standard types."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if isinstance(obj, (set, frozenset)):
        return list(obj)
    raise TypeError(f"Cannot serialize {type(obj)}")


class ResultsWriter:
    """Writes harvest records to a timestamped output directory."""

    def __init__(self, output_dir: Path, run_name: Optional[str] = None):
        """Initialize the writer.

        Args:
            output_dir: Base output directory.
            run_name: Optional label included in the directory name.
        """
        self._base_dir = output_dir
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        if run_name:
            self._output_dir = output_dir / f"harvest_{run_name}_{timestamp}"
        else:
            self._output_dir = output_dir / f"harvest_{timestamp}"

    @property
    def output_dir(self) -> Path:
        """Get the output directory path."""
        return self._output_dir

    async def write(
        self,
        records: list[HarvestRecord],
        started_at: Optional[datetime] = None,
    ) -> Path:
        """Write records and their summary to disk.

        Args:
            records: Batch records in input order.
            started_at: When the run began, for the summary metadata.

        Returns:
            Path to the output directory.
        """
        self._output_dir.mkdir(parents=True, exist_ok=True)

        await self._write_ndjson(
            self._output_dir / "records.ndjson",
            [record.model_dump() for record in records],
        )

        summary = {
            "tool_version": __version__,
            "started_at": started_at,
            "completed_at": datetime.now(),
            "statistics": summarize(records).model_dump(),
        }
        await self._write_json(self._output_dir / "summary.json", summary)

        logger.info(f"Wrote {len(records)} records to {self._output_dir}")
        return self._output_dir

    async def _write_json(self, path: Path, data: Any) -> None:
        """Write data as formatted JSON."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_json_sync, path, data)

    def _write_json_sync(self, path: Path, data: Any) -> None:
        """Synchronous JSON write."""
        with open(path, "wb") as f:
            f.write(json_dumps(data))

    async def _write_ndjson(self, path: Path, items: list[Any]) -> None:
        """Write items as newline-delimited JSON (one object per line)."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_ndjson_sync, path, items)

    def _write_ndjson_sync(self, path: Path, items: list[Any]) -> None:
        """Synchronous NDJSON write."""
        with open(path, "wb") as f:
            for item in items:
                f.write(ndjson_dumps(item))
                f.write(b"\n")
