from typing import Optional

from clickhouse_stream.json_impl import from_json

summary_header = 'X-ClickHouse-Summary'


class QuerySummary:
    summary = {}

    def __init__(self, summary: Optional[dict] = None):
        if summary is not None:
            self.summary = summary

    @classmethod
    def from_header(cls, header: Optional[str]) -> 'QuerySummary':
        """Build a summary from the X-ClickHouse-Summary response header, ignoring a header that can't be parsed"""
        if not header:
            return cls()
        try:
            summary = from_json(header)
        except ValueError:
            return cls()
        return cls(summary if isinstance(summary, dict) else None)

    @property
    def written_rows(self) -> int:
        return int(self.summary.get('written_rows', 0))

    @property
    def written_bytes(self) -> int:
        return int(self.summary.get('written_bytes', 0))

    @property
    def read_rows(self) -> int:
        return int(self.summary.get('read_rows', 0))

    @property
    def read_bytes(self) -> int:
        return int(self.summary.get('read_bytes', 0))

    @property
    def elapsed_ns(self) -> int:
        return int(self.summary.get('elapsed_ns', 0))

    def __repr__(self):
        return f'QuerySummary({self.summary!r})'
