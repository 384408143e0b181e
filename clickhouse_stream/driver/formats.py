from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Union

from clickhouse_stream import json_impl
from clickhouse_stream.driver.exceptions import DecodeError, ProgrammingError


class FormatKind(Enum):
    EACH_ROW_JSON = 'each_row_json'
    DOCUMENT_JSON = 'document_json'
    RAW = 'raw'


@dataclass(frozen=True)
class DataFormat:
    name: str
    kind: FormatKind
    line_delimited: bool

    @property
    def is_json(self) -> bool:
        return self.kind != FormatKind.RAW

    @property
    def streamable(self) -> bool:
        return self.line_delimited


_formats: Dict[str, DataFormat] = {}


def register_format(name: str, kind: FormatKind, line_delimited: bool = None):
    """
    Register a ClickHouse format by name.  JSON formats are encoded and decoded by the client, raw formats are
    passed through as bytes/text
    :param name: ClickHouse format name, case-sensitive
    :param kind: Format family
    :param line_delimited: Whether each record is a single line, defaults to True for each row JSON formats
    """
    if line_delimited is None:
        line_delimited = kind == FormatKind.EACH_ROW_JSON
    _formats[name] = DataFormat(name, kind, line_delimited)


def get_format(name: Union[str, DataFormat]) -> DataFormat:
    if isinstance(name, DataFormat):
        return name
    fmt = _formats.get(name)
    if fmt is None:
        raise ProgrammingError(f'Unsupported data format {name}')
    return fmt


def streamable_formats() -> List[str]:
    return [f.name for f in _formats.values() if f.streamable]


def encode_json(value: Any, fmt: Union[str, DataFormat]) -> str:
    """
    Serialize one value in a JSON format.  Each row formats get one line per value
    """
    fmt = get_format(fmt)
    if fmt.kind == FormatKind.EACH_ROW_JSON:
        return json_impl.to_json_str(value) + '\n'
    if fmt.kind == FormatKind.DOCUMENT_JSON:
        return json_impl.to_json_str(value)
    raise ProgrammingError(f'The client does not support JSON encoding in [{fmt.name}] format.')


def decode_record(text: str, fmt: Union[str, DataFormat], index: int = None) -> Any:
    """Parse a single JSON record, wrapping parser failures in a DecodeError for that record"""
    fmt = get_format(fmt)
    if not fmt.is_json:
        raise ProgrammingError(f'Cannot decode {fmt.name} as JSON')
    try:
        return json_impl.from_json(text)
    except ValueError as ex:
        location = f' at row {index}' if index is not None else ''
        raise DecodeError(f'Malformed {fmt.name} record{location}: {ex}', index, text) from ex


def decode_json(text: str, fmt: Union[str, DataFormat]) -> Any:
    """
    Parse a complete response.  Each row formats become a list of records, document formats a single value
    """
    fmt = get_format(fmt)
    if fmt.kind == FormatKind.EACH_ROW_JSON:
        return [decode_record(line, fmt, ix) for ix, line in enumerate(text.split('\n')) if line]
    if fmt.kind == FormatKind.DOCUMENT_JSON:
        return decode_record(text, fmt)
    raise ProgrammingError(f'Cannot decode {fmt.name} as JSON')


for _name in ('JSONEachRow',
              'JSONStringsEachRow',
              'JSONCompactEachRow',
              'JSONCompactStringsEachRow',
              'JSONCompactEachRowWithNames',
              'JSONCompactEachRowWithNamesAndTypes',
              'JSONCompactStringsEachRowWithNames',
              'JSONCompactStringsEachRowWithNamesAndTypes'):
    register_format(_name, FormatKind.EACH_ROW_JSON)

for _name in ('JSON',
              'JSONStrings',
              'JSONCompact',
              'JSONCompactStrings',
              'JSONColumnsWithMetadata',
              'JSONObjectEachRow'):
    register_format(_name, FormatKind.DOCUMENT_JSON)

for _name in ('CSV',
              'CSVWithNames',
              'CSVWithNamesAndTypes',
              'TabSeparated',
              'TabSeparatedRaw',
              'TabSeparatedWithNames',
              'TabSeparatedWithNamesAndTypes',
              'CustomSeparated',
              'CustomSeparatedWithNames',
              'CustomSeparatedWithNamesAndTypes'):
    register_format(_name, FormatKind.RAW, True)

register_format('Parquet', FormatKind.RAW, False)
