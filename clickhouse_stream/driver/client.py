import logging
from typing import Any, Callable, Dict, Optional, Sequence

from clickhouse_stream.driver.binding import format_query, insert_statement, remove_trailing_semi
from clickhouse_stream.driver.cancel import CancellationToken
from clickhouse_stream.driver.common import dict_copy
from clickhouse_stream.driver.config import ClientConfig, ConnectionParams, resolve_config
from clickhouse_stream.driver.connection import Connection
from clickhouse_stream.driver.formats import DataFormat, get_format
from clickhouse_stream.driver.httpconnection import HttpConnection
from clickhouse_stream.driver.models import CommandResult, ExecResult, InsertResult, PingResult, RequestParams
from clickhouse_stream.driver.resultset import ResultSet
from clickhouse_stream.driver.values import ValuesEncoder, as_insert_values

logger = logging.getLogger(__name__)

MakeConnection = Callable[[ConnectionParams], Connection]
MakeResultSet = Callable[..., ResultSet]


class Client:
    """
    Async ClickHouse client.  Configuration is validated once, when the client is created.  Every call builds its
    own request, so a single client can run many statements concurrently up to the connection limit
    """
    default_query_format = 'JSON'
    default_insert_format = 'JSONCompactEachRow'

    def __init__(self,
                 config: Optional[ClientConfig] = None,
                 make_connection: MakeConnection = HttpConnection,
                 make_result_set: MakeResultSet = ResultSet,
                 values_encoder: Optional[ValuesEncoder] = None):
        """
        :param config: Client options, see ClientConfig
        :param make_connection: Factory for the transport, HttpConnection by default
        :param make_result_set: Factory for query results, called with (stream, format, query_id, summary)
        :param values_encoder: Insert values encoder
        """
        self.params = resolve_config(config or ClientConfig())
        self.connection = make_connection(self.params)
        self._make_result_set = make_result_set
        self._values_encoder = values_encoder or ValuesEncoder()

    @property
    def url(self) -> str:
        return self.params.url

    def _request_params(self,
                        query: str,
                        settings: Optional[Dict[str, Any]],
                        parameters: Optional[Dict[str, Any]],
                        query_id: Optional[str],
                        session_id: Optional[str],
                        cancel_token: Optional[CancellationToken]) -> RequestParams:
        return RequestParams(query=query,
                             settings=dict_copy(self.params.settings, settings),
                             parameters=parameters,
                             query_id=query_id,
                             session_id=session_id or self.params.session_id,
                             cancel_token=cancel_token)

    # pylint: disable=too-many-arguments
    async def query(self,
                    query: str,
                    fmt: Optional[str] = None,
                    settings: Optional[Dict[str, Any]] = None,
                    parameters: Optional[Dict[str, Any]] = None,
                    query_id: Optional[str] = None,
                    session_id: Optional[str] = None,
                    cancel_token: Optional[CancellationToken] = None) -> ResultSet:
        """
        Main query method for SELECT, DESCRIBE and other statements that return data.  The FORMAT clause is added by
        the client, it must not be part of the query text
        :param query: Query statement
        :param fmt: ClickHouse output format, JSON if not set
        :param settings: Optional dictionary of ClickHouse settings, overriding the client settings with the same key
        :param parameters: Values for {name:Type} query parameters
        :param query_id: Query id to send, one is generated if not set
        :param session_id: Session id for this query, overrides the client session id
        :param cancel_token: Token to abort the request and the returned stream
        :return: ResultSet over the live response, which must be consumed or closed
        """
        data_format = get_format(fmt or self.default_query_format)
        params = self._request_params(format_query(query, data_format.name), settings, parameters, query_id,
                                      session_id, cancel_token)
        result = await self.connection.query(params)
        return self._make_result_set(result.stream, data_format, result.query_id, result.summary)

    async def command(self,
                      cmd: str,
                      settings: Optional[Dict[str, Any]] = None,
                      parameters: Optional[Dict[str, Any]] = None,
                      query_id: Optional[str] = None,
                      session_id: Optional[str] = None,
                      cancel_token: Optional[CancellationToken] = None) -> CommandResult:
        """
        Statements without useful output, such as DDL.  The response body is discarded as soon as the response
        arrives.  Use exec to read the output of a statement that can't take a FORMAT clause
        :param cmd: Statement
        :return: CommandResult with the query id and the server summary
        """
        result = await self.exec(cmd, settings, parameters, query_id, session_id, cancel_token)
        result.stream.close()
        return CommandResult(result.query_id, result.summary)

    async def exec(self,
                   query: str,
                   settings: Optional[Dict[str, Any]] = None,
                   parameters: Optional[Dict[str, Any]] = None,
                   query_id: Optional[str] = None,
                   session_id: Optional[str] = None,
                   cancel_token: Optional[CancellationToken] = None) -> ExecResult:
        """
        Send a statement as is, without a FORMAT clause.  The caller must drain or close the returned stream,
        a stream that is left unread times out after the client request_timeout
        :param query: Statement
        :return: ExecResult(stream, query_id, summary)
        """
        query = remove_trailing_semi(query.strip())
        return await self.connection.exec(self._request_params(query, settings, parameters, query_id, session_id,
                                                               cancel_token))

    async def insert(self,
                     table: str,
                     values: Any,
                     fmt: Optional[str] = None,
                     column_names: Optional[Sequence[str]] = None,
                     settings: Optional[Dict[str, Any]] = None,
                     parameters: Optional[Dict[str, Any]] = None,
                     query_id: Optional[str] = None,
                     session_id: Optional[str] = None,
                     cancel_token: Optional[CancellationToken] = None) -> InsertResult:
        """
        Insert data into a table.  Prefer RecordStream or RawStream over lists for large inserts so the data is
        never held in memory at once.  For INSERT ... SELECT and similar statements use command
        :param table: Target table, optionally qualified with the database
        :param values: A list of records, a mapping (for JSONObjectEachRow) or an InsertValues wrapper
        :param fmt: ClickHouse input format, JSONCompactEachRow if not set
        :param column_names: Optional list of target columns
        :param parameters: Values for {name:Type} query parameters, for example in a table function
        :return: InsertResult with the query id and the server summary
        """
        insert_values = as_insert_values(values)
        self._values_encoder.validate(insert_values, fmt or self.default_insert_format)
        data_format: DataFormat = get_format(fmt or self.default_insert_format)
        logger.debug('Inserting %s into %s in %s format', type(insert_values).__name__, table, data_format.name)
        params = self._request_params(insert_statement(table, data_format.name, column_names), settings,
                                      parameters, query_id, session_id, cancel_token)
        params.values = self._values_encoder.encode(insert_values, data_format)
        return await self.connection.insert(params)

    async def ping(self) -> PingResult:
        """
        Health check.  Never raises, a failure is returned in PingResult.error
        """
        return await self.connection.ping()

    async def close(self):
        """Close the connection pool.  The client can't be used afterwards"""
        await self.connection.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

