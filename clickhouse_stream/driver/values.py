import inspect
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, BinaryIO, Iterable, Mapping, Optional, Sequence, Union

from clickhouse_stream import common, json_impl
from clickhouse_stream.driver.exceptions import InsertValuesError, ProgrammingError
from clickhouse_stream.driver.formats import DataFormat, FormatKind, encode_json, get_format

logger = logging.getLogger(__name__)

Payload = Union[str, AsyncIterator[bytes]]
ByteSource = Union[bytes, bytearray, memoryview, BinaryIO, Iterable[bytes], AsyncIterable[bytes]]


class InsertValues:
    """Base class of the insert value shapes accepted by Client.insert"""


@dataclass
class RowValues(InsertValues):
    """A finite in memory sequence of records, serialized in one piece"""
    rows: Sequence[Any]


@dataclass
class RecordStream(InsertValues):
    """A (possibly unbounded) sync or async iterable of records, serialized one record at a time"""
    source: Union[Iterable[Any], AsyncIterable[Any]]


@dataclass
class RawStream(InsertValues):
    """
    Bytes already in the insert format, sent unchanged.  The source may be bytes, a binary file object, or a sync or
    async iterable of byte chunks
    """
    source: ByteSource
    chunk_size: Optional[int] = None


class JSONEnvelope(InsertValues):
    """Pre-shaped JSON documents"""


@dataclass
class JSONDocument(JSONEnvelope):
    """
    Input for the JSON document formats (JSON, JSONCompact, ...).  meta is written once, followed by the rows of data
    which may be a lazy iterable
    """
    data: Union[Iterable[Any], AsyncIterable[Any]]
    meta: Optional[Sequence[Mapping[str, str]]] = None


@dataclass
class JSONObjectEachRow(JSONEnvelope):
    """A mapping of row names to row objects for the JSONObjectEachRow format"""
    rows: Mapping[str, Any]


def as_insert_values(values: Any) -> InsertValues:
    """
    Wrap plain Python values.  Lists and tuples become RowValues, mappings become JSONObjectEachRow.  Streams have to
    be wrapped explicitly, since a stream of records and a stream of raw bytes can't be told apart reliably
    """
    if isinstance(values, InsertValues):
        return values
    if isinstance(values, (list, tuple)):
        return RowValues(values)
    if isinstance(values, Mapping):
        return JSONObjectEachRow(values)
    raise InsertValuesError('Insert expected "values" to be a list of records, a mapping, or an InsertValues '
                            f'wrapper (RecordStream, RawStream, JSONDocument), got: {type(values).__name__}')


def _is_iterable(source: Any) -> bool:
    if isinstance(source, (str, bytes, bytearray, memoryview, Mapping)):
        return False
    return hasattr(source, '__aiter__') or hasattr(source, '__iter__')


async def iterate(source: Union[Iterable[Any], AsyncIterable[Any]]) -> AsyncIterator[Any]:
    if hasattr(source, '__aiter__'):
        async for item in source:
            yield item
    else:
        for item in source:
            yield item


class ValuesEncoder:
    """
    Validates insert values against the target format and turns them into a request payload.  Sequences are
    serialized eagerly into a string, every stream shape into an async iterator of bytes that only pulls from its
    source when the transport asks for the next chunk
    """

    def validate(self, values: InsertValues, fmt: Union[str, DataFormat]):
        try:
            fmt = get_format(fmt)
        except ProgrammingError as ex:
            raise InsertValuesError(str(ex)) from None
        if isinstance(values, RawStream):
            if not isinstance(values.source, (bytes, bytearray, memoryview)) and \
                    not hasattr(values.source, 'read') and not _is_iterable(values.source):
                raise InsertValuesError('RawStream source must be bytes, a binary file object, or an iterable of '
                                        f'byte chunks, got: {type(values.source).__name__}')
            return
        if isinstance(values, (RowValues, RecordStream)):
            if fmt.kind == FormatKind.RAW:
                raise InsertValuesError(f'Insert for {fmt.name} expected a RawStream of bytes, '
                                        f'got {type(values).__name__} of records')
            if fmt.kind != FormatKind.EACH_ROW_JSON:
                raise InsertValuesError(f'{type(values).__name__} can not be encoded in {fmt.name} format, use an '
                                        'each row JSON format or a JSONEnvelope')
            if isinstance(values, RowValues):
                if not isinstance(values.rows, Sequence) or isinstance(values.rows, (str, bytes)):
                    raise InsertValuesError(f'RowValues expected a sequence, got: {type(values.rows).__name__}')
            elif not _is_iterable(values.source):
                raise InsertValuesError(f'RecordStream expected an iterable of records, '
                                        f'got: {type(values.source).__name__}')
            return
        if isinstance(values, JSONObjectEachRow):
            if fmt.name != 'JSONObjectEachRow':
                raise InsertValuesError(f'JSONObjectEachRow values can not be inserted in {fmt.name} format')
            if not isinstance(values.rows, Mapping):
                raise InsertValuesError(f'JSONObjectEachRow expected a mapping, got: {type(values.rows).__name__}')
            return
        if isinstance(values, JSONDocument):
            if fmt.kind != FormatKind.DOCUMENT_JSON or fmt.name == 'JSONObjectEachRow':
                raise InsertValuesError(f'JSONDocument values can not be inserted in {fmt.name} format')
            if not _is_iterable(values.data):
                raise InsertValuesError(f'JSONDocument data must be iterable, got: {type(values.data).__name__}')
            return
        raise InsertValuesError(f'Unrecognized insert values {type(values).__name__}')

    def encode(self, values: InsertValues, fmt: Union[str, DataFormat]) -> Payload:
        """
        Produce the insert payload.  validate should be called first
        :param values: Insert values
        :param fmt: Target format
        :return: A string for in memory values, an async iterator of bytes for every stream shape
        """
        fmt = get_format(fmt)
        logger.debug('Encoding %s insert values in %s format', type(values).__name__, fmt.name)
        if isinstance(values, RowValues):
            return ''.join(encode_json(row, fmt) for row in values.rows)
        if isinstance(values, RecordStream):
            return self._encode_records(values.source, fmt)
        if isinstance(values, RawStream):
            return self._raw_chunks(values)
        if isinstance(values, JSONObjectEachRow):
            return encode_json(values.rows, fmt)
        if isinstance(values, JSONDocument):
            return self._encode_document(values)
        raise InsertValuesError(f'Unrecognized insert values {type(values).__name__}')

    @staticmethod
    async def _encode_records(source, fmt: DataFormat) -> AsyncIterator[bytes]:
        async for record in iterate(source):
            yield encode_json(record, fmt).encode()

    @staticmethod
    async def _encode_document(values: JSONDocument) -> AsyncIterator[bytes]:
        if values.meta is not None:
            yield b'{"meta":' + json_impl.any_to_json(list(values.meta)) + b',"data":['
        else:
            yield b'{"data":['
        separator = b''
        async for row in iterate(values.data):
            yield separator + json_impl.any_to_json(row)
            separator = b','
        yield b']}'

    @staticmethod
    async def _raw_chunks(values: RawStream) -> AsyncIterator[bytes]:
        source = values.source
        if isinstance(source, (bytes, bytearray, memoryview)):
            yield bytes(source)
            return
        if hasattr(source, 'read'):
            chunk_size = values.chunk_size or common.get_setting('insert_chunk_size')
            is_async = inspect.iscoroutinefunction(source.read)
            while True:
                chunk = await source.read(chunk_size) if is_async else source.read(chunk_size)
                if not chunk:
                    break
                yield chunk.encode() if isinstance(chunk, str) else chunk
            return
        async for chunk in iterate(source):
            yield chunk.encode() if isinstance(chunk, str) else chunk
