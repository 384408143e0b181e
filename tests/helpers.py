import asyncio
import gzip
import json
import re
import zlib
from contextlib import asynccontextmanager
from typing import Any, Dict, List, NamedTuple, Optional

import lz4.frame
import zstandard
from aiohttp import web
from aiohttp.test_utils import TestServer

from clickhouse_stream.driver import create_client

create_re = re.compile(r'CREATE TABLE (?:IF NOT EXISTS )?(\S+)\s*\((.*)\)', re.S | re.I)
drop_re = re.compile(r'DROP TABLE (?:IF EXISTS )?(\S+)', re.I)
insert_re = re.compile(r'INSERT INTO (\S+)(?: \(([^)]*)\))? FORMAT (\w+)', re.I)
select_re = re.compile(r'SELECT \* FROM (\S+)(?: ORDER BY (\w+))?\s*\nFORMAT (\w+)$', re.S | re.I)
numbers_re = re.compile(r'SELECT number FROM system\.numbers LIMIT (\d+)\s*(?:\nFORMAT (\w+))?$', re.S | re.I)
format_re = re.compile(r'\s*\nFORMAT (\w+)$')


class RecordedRequest(NamedTuple):
    method: str
    path: str
    params: Dict[str, str]
    headers: Dict[str, str]
    body: bytes
    raw_body: bytes


def decompress(data: bytes, encoding: Optional[str]) -> bytes:
    if not encoding:
        return data
    if encoding == 'gzip':
        return gzip.decompress(data)
    if encoding == 'deflate':
        return zlib.decompress(data)
    if encoding == 'zstd':
        return zstandard.ZstdDecompressor().decompressobj().decompress(data)
    if encoding == 'lz4':
        return lz4.frame.decompress(data)
    raise ValueError(encoding)


class _ChunkCompressor:
    def __init__(self, encoding: str):
        self.encoding = encoding
        if encoding == 'gzip':
            self._obj = zlib.compressobj(6, zlib.DEFLATED, 16 + zlib.MAX_WBITS)
        elif encoding == 'zstd':
            self._obj = zstandard.ZstdCompressor().compressobj()
        elif encoding == 'lz4':
            self._obj = lz4.frame.LZ4FrameCompressor()
            self._header = self._obj.begin()
        else:
            raise ValueError(encoding)

    def compress(self, data: bytes) -> bytes:
        if self.encoding == 'lz4':
            header, self._header = self._header, b''
            return header + self._obj.compress(data)
        return self._obj.compress(data)

    def flush(self) -> bytes:
        if self.encoding == 'lz4':
            return self._header + self._obj.flush()
        return self._obj.flush()


def render_rows(rows: List[Dict[str, Any]], fmt: str) -> bytes:
    if fmt == 'JSONEachRow':
        return b''.join(json.dumps(row).encode() + b'\n' for row in rows)
    if fmt == 'JSONCompactEachRow':
        return b''.join(json.dumps(list(row.values())).encode() + b'\n' for row in rows)
    if fmt == 'CSV':
        return b''.join(','.join(str(v) for v in row.values()).encode() + b'\n' for row in rows)
    if fmt in ('TabSeparated', 'TSV'):
        return b''.join('\t'.join(str(v) for v in row.values()).encode() + b'\n' for row in rows)
    if fmt == 'JSON':
        names = list(rows[0].keys()) if rows else []
        return json.dumps({'meta': [{'name': name, 'type': 'String'} for name in names],
                           'data': rows,
                           'rows': len(rows)}).encode()
    raise ValueError(f'Fake server does not render {fmt}')


# pylint: disable=too-many-instance-attributes
class FakeClickHouse:
    """
    A tiny in-process stand in for the ClickHouse HTTP interface.  It understands just enough SQL to create tables,
    insert JSON/CSV rows, select them back and stream numbers
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.columns: Dict[str, List[str]] = {}
        self.requests: List[RecordedRequest] = []
        self.response_encoding: Optional[str] = None
        self.ping_status = 200
        self.rows_per_chunk = 100
        self.chunk_delay = 0.0
        self.header_delay = 0.0
        self.app = web.Application(handler_args={'auto_decompress': False})
        self.app.router.add_get('/ping', self._ping)
        self.app.router.add_post('/', self._handle)

    @property
    def last_request(self) -> RecordedRequest:
        return self.requests[-1]

    async def _ping(self, request: web.Request):
        self.requests.append(RecordedRequest(request.method, request.path, dict(request.query),
                                             dict(request.headers), b'', b''))
        return web.Response(status=self.ping_status, text='Ok.\n')

    async def _handle(self, request: web.Request):
        raw_body = await request.read()
        body = decompress(raw_body, request.headers.get('Content-Encoding'))
        params = dict(request.query)
        self.requests.append(RecordedRequest(request.method, request.path, params, dict(request.headers), body,
                                             raw_body))
        headers = {'X-ClickHouse-Query-Id': params.get('query_id') or 'server-generated-id'}
        if self.header_delay:
            await asyncio.sleep(self.header_delay)
        if 'query' in params:
            return self._insert(params['query'], body, headers)
        return await self._query(request, body.decode(), headers)

    def _error(self, code: int, message: str, status: int = 500):
        return web.Response(status=status, text=f'Code: {code}. DB::Exception: {message}',
                            headers={'X-ClickHouse-Exception-Code': str(code)})

    def _insert(self, query: str, body: bytes, headers: Dict[str, str]):
        match = insert_re.match(query)
        if not match:
            return self._error(62, f'Syntax error: {query}', 400)
        table, col_list, fmt = match.groups()
        if table not in self.tables:
            return self._error(60, f'Table {table} does not exist', 404)
        columns = [c.strip(' `') for c in col_list.split(',')] if col_list else self.columns[table]
        rows = []
        for line in body.decode().split('\n'):
            if not line:
                continue
            if fmt == 'JSONEachRow':
                rows.append(json.loads(line))
            elif fmt == 'JSONCompactEachRow':
                rows.append(dict(zip(columns, json.loads(line))))
            elif fmt == 'CSV':
                values = [int(v) if v.isdigit() else v.strip('"') for v in line.split(',')]
                rows.append(dict(zip(columns, values)))
            else:
                return self._error(73, f'Unknown format {fmt}', 400)
        self.tables[table].extend(rows)
        headers['X-ClickHouse-Summary'] = json.dumps({'written_rows': str(len(rows)),
                                                      'written_bytes': str(len(body))})
        return web.Response(status=200, headers=headers)

    async def _query(self, request: web.Request, query: str, headers: Dict[str, str]):
        query = query.strip()
        match = create_re.match(query)
        if match:
            table, columns = match.groups()
            self.tables[table] = []
            self.columns[table] = [c.strip().split(' ')[0].strip('`') for c in columns.split(',')]
            return web.Response(status=200, headers=headers)
        match = drop_re.match(query)
        if match:
            self.tables.pop(match.group(1), None)
            return web.Response(status=200, headers=headers)
        match = select_re.match(query)
        if match:
            table, order_by, fmt = match.groups()
            if table not in self.tables:
                return self._error(60, f'Table {table} does not exist', 404)
            rows = list(self.tables[table])
            if order_by:
                rows.sort(key=lambda row: row[order_by])
            return await self._stream(request, headers, rows, fmt)
        match = numbers_re.match(query)
        if match:
            count, fmt = match.groups()
            rows = [{'number': ix} for ix in range(int(count))]
            return await self._stream(request, headers, rows, fmt or 'TabSeparated')
        if query.startswith('SELECT malformed'):
            fmt = format_re.search(query).group(1)
            payload = b'{"id":1}\n{"id":2\n{"id":3}\n'
            return await self._stream(request, headers, [], fmt, payload)
        if query.startswith('SHOW TABLES'):
            payload = ''.join(f'{name}\n' for name in sorted(self.tables)).encode()
            return await self._stream(request, headers, [], 'TabSeparated', payload)
        if query.startswith(('TRUNCATE', 'SET', 'OPTIMIZE')):
            return web.Response(status=200, headers=headers)
        return self._error(62, f'Syntax error: failed at position 1 ({query})', 400)

    async def _stream(self, request: web.Request, headers: Dict[str, str], rows: List[Dict[str, Any]], fmt: str,
                      payload: Optional[bytes] = None):
        compressor = None
        accept = request.headers.get('Accept-Encoding', '')
        if self.response_encoding and self.response_encoding in accept and \
                request.query.get('enable_http_compression') == '1':
            compressor = _ChunkCompressor(self.response_encoding)
            headers['Content-Encoding'] = self.response_encoding
        response = web.StreamResponse(status=200, headers=headers)
        await response.prepare(request)
        if payload is not None:
            chunks = [payload]
        elif fmt in ('JSONEachRow', 'JSONCompactEachRow', 'CSV', 'TabSeparated'):
            chunks = [render_rows(rows[ix:ix + self.rows_per_chunk], fmt)
                      for ix in range(0, len(rows), self.rows_per_chunk)]
        else:
            chunks = [render_rows(rows, fmt)]
        for ix, chunk in enumerate(chunks):
            if ix and self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            data = compressor.compress(chunk) if compressor else chunk
            if data:
                await response.write(data)
        if compressor:
            data = compressor.flush()
            if data:
                await response.write(data)
        await response.write_eof()
        return response


@asynccontextmanager
async def fake_clickhouse(**client_kwargs):
    """Start a FakeClickHouse server and a client connected to it"""
    fake = FakeClickHouse()
    server = TestServer(fake.app)
    await server.start_server()
    client = create_client(url=str(server.make_url('/')), **client_kwargs)
    try:
        yield fake, client
    finally:
        await client.close()
        await server.close()


class MockContent:
    """Mock aiohttp StreamReader content."""

    def __init__(self, chunks, error: Optional[Exception] = None, delay: float = 0.0):
        self.chunks = list(chunks)
        self.index = 0
        self.error = error
        self.delay = delay

    async def read(self, n=-1):  # pylint: disable=unused-argument
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.index >= len(self.chunks):
            if self.error:
                raise self.error
            return b''
        chunk = self.chunks[self.index]
        self.index += 1
        return chunk


class MockResponse:
    """Mock aiohttp ClientResponse."""

    def __init__(self, chunks, encoding=None, error: Optional[Exception] = None, delay: float = 0.0):
        self.content = MockContent(chunks, error, delay)
        self.headers = {'Content-Encoding': encoding} if encoding else {}
        self.status = 200
        self.closed = False

    def close(self):
        self.closed = True

    def release(self):
        pass
