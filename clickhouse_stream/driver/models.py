from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from clickhouse_stream.driver.cancel import CancellationToken
from clickhouse_stream.driver.streaming import ResponseStream
from clickhouse_stream.driver.summary import QuerySummary
from clickhouse_stream.driver.values import Payload


# pylint: disable=too-many-instance-attributes
@dataclass
class RequestParams:
    """Everything the connection needs to send one statement"""
    query: str
    settings: Dict[str, Any] = field(default_factory=dict)
    parameters: Optional[Mapping[str, Any]] = None
    query_id: Optional[str] = None
    session_id: Optional[str] = None
    cancel_token: Optional[CancellationToken] = None
    values: Optional[Payload] = None


@dataclass
class ConnQueryResult:
    stream: ResponseStream
    query_id: str
    summary: QuerySummary = field(default_factory=QuerySummary)

    def __iter__(self):
        return iter((self.stream, self.query_id))


ExecResult = ConnQueryResult


@dataclass
class CommandResult:
    query_id: str
    summary: QuerySummary = field(default_factory=QuerySummary)


@dataclass
class InsertResult:
    executed: bool
    query_id: str
    summary: QuerySummary = field(default_factory=QuerySummary)


@dataclass
class PingResult:
    success: bool
    error: Optional[Exception] = None

    def __bool__(self):
        return self.success
