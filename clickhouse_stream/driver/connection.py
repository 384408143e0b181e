from abc import ABC, abstractmethod

from clickhouse_stream.driver.models import ConnQueryResult, InsertResult, PingResult, RequestParams


class Connection(ABC):
    """
    Transport to a single ClickHouse endpoint.  Implementations own their connection pool and return live response
    streams that the caller is responsible for draining or closing
    """

    @abstractmethod
    async def query(self, params: RequestParams) -> ConnQueryResult:
        """Send a statement that returns data.  The query text must already contain any FORMAT clause"""

    @abstractmethod
    async def exec(self, params: RequestParams) -> ConnQueryResult:
        """Send a statement as is and return the unread response"""

    @abstractmethod
    async def insert(self, params: RequestParams) -> InsertResult:
        """Send an INSERT statement with the encoded values in params.values"""

    @abstractmethod
    async def ping(self) -> PingResult:
        """Health check.  Implementations must report failures in the result instead of raising"""

    @abstractmethod
    async def close(self):
        """Release every pooled resource.  Later requests raise ConnectionClosedError"""
