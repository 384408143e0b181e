from typing import List

import pytest

from clickhouse_stream.driver import create_client
from clickhouse_stream.driver.client import Client
from clickhouse_stream.driver.config import ClientConfig
from clickhouse_stream.driver.connection import Connection
from clickhouse_stream.driver.exceptions import InsertValuesError, ProgrammingError
from clickhouse_stream.driver.models import ConnQueryResult, InsertResult, PingResult, RequestParams
from clickhouse_stream.driver.streaming import ResponseStream
from clickhouse_stream.driver.values import RawStream, RecordStream
from tests.helpers import MockResponse


class RecordingConnection(Connection):
    def __init__(self, params):
        self.params = params
        self.requests: List[RequestParams] = []
        self.responses: List[MockResponse] = []
        self.body = [b'{"id":1}\n']
        self.closed = False

    def _result(self, params: RequestParams) -> ConnQueryResult:
        self.requests.append(params)
        response = MockResponse(self.body)
        self.responses.append(response)
        return ConnQueryResult(ResponseStream(response, params.query_id or 'generated'),
                               params.query_id or 'generated')

    async def query(self, params):
        return self._result(params)

    async def exec(self, params):
        return self._result(params)

    async def insert(self, params):
        self.requests.append(params)
        return InsertResult(True, params.query_id or 'generated')

    async def ping(self):
        return PingResult(True)

    async def close(self):
        self.closed = True


def make_client(**kwargs) -> Client:
    return Client(ClientConfig(**kwargs), make_connection=RecordingConnection)


@pytest.mark.asyncio
async def test_query_adds_format():
    client = make_client()
    rs = await client.query('SELECT * FROM t;')
    assert client.connection.requests[-1].query == 'SELECT * FROM t \nFORMAT JSON'
    assert rs.format.name == 'JSON'
    rs.close()
    rs = await client.query('SELECT * FROM t', fmt='JSONEachRow', query_id='my-id')
    assert client.connection.requests[-1].query == 'SELECT * FROM t \nFORMAT JSONEachRow'
    assert rs.query_id == 'my-id'
    assert await rs.json() == [{'id': 1}]


@pytest.mark.asyncio
async def test_unknown_query_format():
    client = make_client()
    with pytest.raises(ProgrammingError, match='Unsupported data format'):
        await client.query('SELECT 1', fmt='Pretty')
    assert not client.connection.requests


@pytest.mark.asyncio
async def test_settings_merge():
    client = make_client(settings={'max_threads': 4, 'readonly': 1}, session_id='client-session')
    rs = await client.query('SELECT 1', settings={'max_threads': 8}, session_id='call-session')
    rs.close()
    request = client.connection.requests[-1]
    assert request.settings == {'max_threads': 8, 'readonly': 1}
    assert request.session_id == 'call-session'
    assert client.params.settings == {'max_threads': 4, 'readonly': 1}
    await client.command('SET x = 1')
    assert client.connection.requests[-1].session_id == 'client-session'
    assert client.connection.requests[-1].settings == {'max_threads': 4, 'readonly': 1}


@pytest.mark.asyncio
async def test_command_and_exec():
    client = make_client()
    result = await client.command('CREATE TABLE t (id UInt32) ENGINE Memory;;', query_id='ddl-1')
    assert result.query_id == 'ddl-1'
    assert client.connection.requests[-1].query == 'CREATE TABLE t (id UInt32) ENGINE Memory'
    assert client.connection.responses[-1].closed

    stream, query_id = await client.exec('SHOW TABLES;', parameters={'db': 'default'})
    assert query_id == 'generated'
    assert client.connection.requests[-1].query == 'SHOW TABLES'
    assert client.connection.requests[-1].parameters == {'db': 'default'}
    assert await stream.read_all() == b'{"id":1}\n'


@pytest.mark.asyncio
async def test_insert():
    client = make_client()
    result = await client.insert('t', [[1, 'a'], [2, 'b']], column_names=['id', 'name'])
    assert result.executed
    request = client.connection.requests[-1]
    assert request.query == 'INSERT INTO t (`id`, `name`) FORMAT JSONCompactEachRow'
    assert request.values == '[1,"a"]\n[2,"b"]\n'

    await client.insert('t', RecordStream([{'id': 1}]), fmt='JSONEachRow')
    payload = client.connection.requests[-1].values
    assert b''.join([chunk async for chunk in payload]) == b'{"id":1}\n'

    await client.insert('t', RawStream(b'1,a\n'), fmt='CSV')
    assert client.connection.requests[-1].query == 'INSERT INTO t FORMAT CSV'

    await client.insert('t', [[1]], parameters={'x': 1})
    assert client.connection.requests[-1].parameters == {'x': 1}
    assert not hasattr(client.connection.requests[-1], 'http_headers')


@pytest.mark.asyncio
async def test_insert_validation_sends_nothing():
    client = make_client()
    with pytest.raises(InsertValuesError, match='Insert for CSV expected a RawStream'):
        await client.insert('t', [{'id': 1}], fmt='CSV')
    with pytest.raises(InsertValuesError, match='Unsupported data format'):
        await client.insert('t', [{'id': 1}], fmt='NoSuchFormat')
    with pytest.raises(InsertValuesError):
        await client.insert('t', 42)
    assert not client.connection.requests


@pytest.mark.asyncio
async def test_ping_and_close():
    async with make_client() as client:
        assert await client.ping()
        connection = client.connection
    assert connection.closed


def test_create_client_dsn():
    client = create_client('https://bob:pw@ch.example.com:8443/analytics?max_threads=2&readonly=1',
                           settings={'readonly': 2})
    assert client.url == 'https://ch.example.com:8443'
    assert client.params.username == 'bob'
    assert client.params.database == 'analytics'
    assert dict(client.params.settings) == {'max_threads': '2', 'readonly': 2}
