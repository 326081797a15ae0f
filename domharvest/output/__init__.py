"""Output writers for harvest results."""

from .results_writer import ResultsWriter, json_dumps, ndjson_dumps

__all__ = ["ResultsWriter", "json_dumps", "ndjson_dumps"]
