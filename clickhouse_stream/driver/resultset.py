import logging
from typing import Any, AsyncIterator, List, Optional, Union

from clickhouse_stream.driver.exceptions import ProgrammingError
from clickhouse_stream.driver.formats import DataFormat, FormatKind, decode_json, decode_record, get_format, \
    streamable_formats
from clickhouse_stream.driver.streaming import ResponseStream
from clickhouse_stream.driver.summary import QuerySummary

logger = logging.getLogger(__name__)


class Row:
    """A single line of a streamed result"""
    __slots__ = 'text', 'format', 'index'

    def __init__(self, text: str, fmt: DataFormat, index: int):
        self.text = text
        self.format = fmt
        self.index = index

    def json(self) -> Any:
        """Parse the row.  A malformed row raises DecodeError without affecting any other row"""
        return decode_record(self.text, self.format, self.index)

    def __repr__(self):
        return f'Row({self.text!r})'


class ResultSet:
    """
    Query result over a live response stream.  The body can be consumed once, either whole (read, text, json) or
    row by row (stream, rows).  Reading it again returns an empty result instead of repeating the query
    """

    def __init__(self,
                 stream: ResponseStream,
                 fmt: Union[str, DataFormat],
                 query_id: str,
                 summary: Optional[QuerySummary] = None):
        self._stream = stream
        self.format = get_format(fmt)
        self.query_id = query_id
        self.summary = summary or QuerySummary()
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    async def read(self) -> bytes:
        """
        :return: The complete (decompressed) response body, or b'' if the result was already consumed
        """
        if self._consumed:
            return b''
        self._consumed = True
        try:
            return await self._stream.read_all()
        finally:
            self._stream.close()

    async def text(self) -> str:
        """Response body as text.  Bytes that are not valid UTF-8 are replaced with U+FFFD"""
        return (await self.read()).decode(errors='replace')

    async def json(self) -> Any:
        """
        Parse the complete response.  Each row formats return a list of records, document formats (JSON,
        JSONCompact, ...) the parsed document.  A consumed result returns [] or None respectively
        """
        if not self.format.is_json:
            raise ProgrammingError(f'Cannot decode {self.format.name} as JSON')
        if self._consumed:
            return [] if self.format.kind == FormatKind.EACH_ROW_JSON else None
        return decode_json(await self.text(), self.format)

    def stream(self) -> AsyncIterator[List[Row]]:
        """
        Iterate the response in batches of rows, one batch per network chunk.  Only line oriented formats can be
        streamed
        """
        if not self.format.streamable:
            raise ProgrammingError(f'{self.format.name} format is not streamable. '
                                   f'Streamable formats: {", ".join(streamable_formats())}')
        return self._row_batches()

    async def rows(self) -> AsyncIterator[Any]:
        """
        Iterate parsed records.  Iteration stops with a DecodeError at the first malformed record
        """
        if not self.format.is_json:
            raise ProgrammingError(f'Cannot decode {self.format.name} as JSON')
        async for batch in self.stream():
            for row in batch:
                yield row.json()

    async def _row_batches(self) -> AsyncIterator[List[Row]]:
        if self._consumed:
            return
        self._consumed = True
        fmt = self.format
        pending = b''
        index = 0
        try:
            async for chunk in self._stream:
                lines = (pending + chunk).split(b'\n')
                pending = lines.pop()
                batch = []
                for line in lines:
                    if line:
                        batch.append(Row(line.decode(errors='replace'), fmt, index))
                        index += 1
                if batch:
                    yield batch
            if pending:
                yield [Row(pending.decode(errors='replace'), fmt, index)]
                index += 1
        finally:
            self._stream.close()
        logger.debug('Streamed %d rows for query %s', index, self.query_id)

    def close(self):
        self._stream.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
