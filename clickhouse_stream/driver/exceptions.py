"""
The error hierarchy follows the PEP 249 layout.  Errors raised because the client gave up on a request
(cancellation, timeout) are kept outside DatabaseError so they can be told apart from errors reported by the server.
"""
from typing import Optional


class ClickHouseError(Exception):
    """Exception related to operation with ClickHouse."""


class Error(ClickHouseError):
    """Exception that is the base class of all other error exceptions."""


class InterfaceError(Error):
    """Exception raised for errors that are related to the database
    interface rather than the database itself."""


class ConnectionClosedError(InterfaceError):
    """The connection was used after it was closed"""


class DatabaseError(Error):
    """Exception raised for errors that are related to the database."""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None,
                 body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.code = code
        self.body = body


class DataError(DatabaseError):
    """Exception raised for errors that are due to problems with the
    processed data like division by zero, numeric value out of range,
    etc."""


class DecodeError(DataError):
    """A single record of a streamed result could not be decoded"""

    def __init__(self, message: str, index: Optional[int] = None, record: Optional[str] = None):
        super().__init__(message)
        self.index = index
        self.record = record


class OperationalError(DatabaseError):
    """Exception raised for errors that are related to the database's
    operation and not necessarily under the control of the programmer,
    e.g. an unexpected disconnect occurs, the data source name is not
    found, a transaction could not be processed, a memory allocation
    error occurred during processing, etc."""


class ProgrammingError(Error):
    """Exception raised for programming errors, e.g. table not found
    or already exists, syntax error in the SQL statement, wrong number
    of parameters specified, etc."""


class ConfigurationError(ProgrammingError):
    """Invalid client configuration, raised when the client is constructed"""


class InsertValuesError(ProgrammingError):
    """Insert values do not match the requested format, raised before any request is sent"""


class StreamClosedError(ProgrammingError):
    """Exception raised when a stream operation is executed on a closed stream."""

    def __init__(self):
        super().__init__('Executing a streaming operation on a closed stream')


class NotSupportedError(Error):
    """Exception raised in case a method or database API was used
    which is not supported by the database"""


class QueryCancelledError(Error):
    """The request was aborted through its cancellation token"""


class QueryTimeoutError(Error):
    """The request made no progress within the configured request timeout"""
