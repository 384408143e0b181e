import asyncio
import ssl
import uuid
from base64 import b64encode
from typing import Any, Dict, Optional, Tuple

import aiohttp
import certifi

from clickhouse_stream import common
from clickhouse_stream.driver.binding import bind_params, format_settings
from clickhouse_stream.driver.cancel import cancellable
from clickhouse_stream.driver.compression import available_compression, decompress_response, get_compressor
from clickhouse_stream.driver.config import ConnectionParams
from clickhouse_stream.driver.connection import Connection
from clickhouse_stream.driver.exceptions import ConnectionClosedError, DatabaseError, OperationalError, \
    QueryCancelledError, QueryTimeoutError
from clickhouse_stream.driver.models import ConnQueryResult, InsertResult, PingResult, RequestParams
from clickhouse_stream.driver.streaming import ResponseStream, compress_stream
from clickhouse_stream.driver.summary import QuerySummary, summary_header

ex_header = 'X-ClickHouse-Exception-Code'
query_id_header = 'X-ClickHouse-Query-Id'


# pylint: disable=too-many-instance-attributes
class HttpConnection(Connection):
    """
    Connection over the ClickHouse HTTP interface using a pooled aiohttp ClientSession.  The session is created
    lazily on the first request so that it is bound to the running event loop
    """

    def __init__(self, params: ConnectionParams):
        self.params = params
        self.url = params.url
        self.logger = params.logger
        self.headers = self._default_headers()
        self._timeout = aiohttp.ClientTimeout(
            total=None,
            connect=float(params.connect_timeout),
            sock_connect=float(params.connect_timeout),
            sock_read=float(params.request_timeout),
        )
        limit = params.max_open_connections or 0
        self._connector_kwargs = {
            'limit': limit,
            'limit_per_host': limit,
            'keepalive_timeout': params.keep_alive_timeout if params.keep_alive else None,
            'force_close': not params.keep_alive,
            'ssl': self._ssl_context() or True,
        }
        self._session: Optional[aiohttp.ClientSession] = None
        self._closed = False

    def _default_headers(self) -> Dict[str, str]:
        params = self.params
        headers = {}
        if params.client_cert:
            headers['X-ClickHouse-User'] = params.username
            headers['X-ClickHouse-SSL-Certificate-Auth'] = 'on'
        else:
            credentials = b64encode(f'{params.username}:{params.password}'.encode()).decode()
            headers['Authorization'] = f'Basic {credentials}'
        headers['User-Agent'] = common.build_client_name(params.application)
        # Compressed responses are decompressed by ResponseStream, never by aiohttp
        headers['Accept-Encoding'] = 'identity'
        headers.update(params.http_headers)
        return headers

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        params = self.params
        if not params.secure:
            return None
        ca_cert = certifi.where() if params.ca_cert == 'certifi' else params.ca_cert
        ssl_context = ssl.create_default_context(cafile=ca_cert)
        if not params.verify:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
        if params.client_cert:
            ssl_context.load_cert_chain(params.client_cert, params.client_cert_key)
        return ssl_context

    def _get_session(self) -> aiohttp.ClientSession:
        if self._closed:
            raise ConnectionClosedError(f'Connection to {self.url} is closed')
        if self._session is None:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(**self._connector_kwargs),
                timeout=self._timeout,
                headers=self.headers,
                trust_env=False,
                auto_decompress=False,
                skip_auto_headers={'Accept-Encoding'},
            )
        return self._session

    async def query(self, params: RequestParams) -> ConnQueryResult:
        response, query_id = await self._request(params, params.query)
        return self._query_result(response, query_id, params)

    async def exec(self, params: RequestParams) -> ConnQueryResult:
        response, query_id = await self._request(params, params.query)
        return self._query_result(response, query_id, params)

    async def insert(self, params: RequestParams) -> InsertResult:
        response, query_id = await self._request(params, params.values, query_in_url=True)
        result = self._query_result(response, query_id, params)
        await result.stream.read_all()
        self.logger.debug('Insert for query %s completed with status %d', query_id, response.status)
        return InsertResult(True, query_id, result.summary)

    async def ping(self) -> PingResult:
        try:
            session = self._get_session()
            async with session.get(f'{self.url}/ping') as response:
                body = await response.read()
                if response.status != 200:
                    raise DatabaseError(f'Ping failed with HTTP status {response.status}', response.status,
                                        body=body.decode(errors='backslashreplace'))
            return PingResult(True)
        except Exception as ex:  # pylint: disable=broad-exception-caught
            self.logger.warning('Ping to %s failed: %s', self.url, ex)
            return PingResult(False, ex)

    async def close(self):
        self._closed = True
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _query_result(self, response: aiohttp.ClientResponse, query_id: str,
                      params: RequestParams) -> ConnQueryResult:
        stream = ResponseStream(response,
                                query_id,
                                encoding=response.headers.get('Content-Encoding'),
                                cancel_token=params.cancel_token,
                                idle_timeout=self.params.request_timeout,
                                log=self.logger)
        return ConnQueryResult(stream, query_id, QuerySummary.from_header(response.headers.get(summary_header)))

    def _url_params(self, params: RequestParams, query_id: Optional[str], query_in_url: bool) -> Dict[str, str]:
        url_params = format_settings(params.settings)
        url_params.update(bind_params(params.parameters))
        session_id = params.session_id or self.params.session_id
        if session_id:
            url_params['session_id'] = session_id
        if query_id:
            url_params['query_id'] = query_id
        if self.params.database:
            url_params['database'] = self.params.database
        if self.params.compression.decompress_response:
            url_params['enable_http_compression'] = '1'
        if query_in_url:
            url_params['query'] = params.query
        return url_params

    def _body(self, data: Any, headers: Dict[str, str]):
        method = self.params.compression.compress_request
        if data is None or not method:
            return data
        headers['Content-Encoding'] = method
        if isinstance(data, str):
            data = data.encode()
        if isinstance(data, (bytes, bytearray)):
            return get_compressor(method).compress(bytes(data))
        return compress_stream(data, get_compressor(method))

    async def _request(self, params: RequestParams, data: Any,
                       query_in_url: bool = False) -> Tuple[aiohttp.ClientResponse, str]:
        session = self._get_session()
        query_id = params.query_id
        if not query_id and common.get_setting('autogenerate_query_id'):
            query_id = str(uuid.uuid4())
        url_params = self._url_params(params, query_id, query_in_url)
        headers = {}
        if query_in_url:
            headers['Content-Type'] = 'application/octet-stream'
        else:
            headers['Content-Type'] = 'text/plain; charset=utf-8'
        if self.params.compression.decompress_response:
            headers['Accept-Encoding'] = ','.join(available_compression)
        body = self._body(data, headers)
        self.logger.debug('Sending request for query %s to %s', query_id, self.url)

        async def send():
            return await session.request('POST', f'{self.url}/', params=url_params, data=body, headers=headers)

        try:
            response = await cancellable(send(), params.cancel_token)
        except QueryCancelledError:
            self.logger.debug('Request for query %s was cancelled', query_id)
            raise
        except asyncio.TimeoutError as ex:
            raise QueryTimeoutError(f'Timed out waiting for response to query {query_id} from {self.url}') from ex
        except aiohttp.ClientError as ex:
            raise OperationalError(f'Network Error: {ex}') from ex
        if 200 <= response.status < 300 and not response.headers.get(ex_header):
            return response, response.headers.get(query_id_header) or query_id or ''
        return await self._error_handler(response)

    async def _error_handler(self, response: aiohttp.ClientResponse):
        """
        Raise a DatabaseError for a failed response with as much context as the server provided
        """
        body = ''
        try:
            raw_body = await response.read()
            body = decompress_response(raw_body, response.headers.get('Content-Encoding'))
            body = body.decode(errors='backslashreplace').strip()
        except Exception:  # pylint: disable=broad-exception-caught
            self.logger.warning('Failed to read error response body', exc_info=True)
        finally:
            response.close()
        err_code = response.headers.get(ex_header)
        if err_code:
            err_str = f'Received ClickHouse exception, code: {err_code}'
        else:
            err_str = f'HTTP driver received HTTP status {response.status}'
        if body:
            err_str = f'{err_str}, server response: {body}'
        err_str = f'{err_str} (for url {self.url})'
        raise DatabaseError(err_str, response.status, err_code, body or None) from None
