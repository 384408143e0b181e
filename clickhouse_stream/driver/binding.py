from datetime import date, datetime, timezone
from enum import Enum
from ipaddress import IPv4Address, IPv6Address
from typing import Any, Dict, Mapping, Optional, Sequence
from uuid import UUID

from clickhouse_stream.driver.exceptions import ProgrammingError

BS = '\\'
must_escape = {'\t': '\\t', '\n': '\\n', BS: BS + BS, "'": "\\'", '`': '\\`'}
statement_terminator = ';'


def escape_str(value: str):
    return ''.join(must_escape.get(c, c) for c in value)


def quote_identifier(identifier: str):
    first_char = identifier[0]
    if first_char in ('`', '"') and identifier[-1] == first_char:
        # Identifier is already quoted, assume that it's valid
        return identifier
    return f'`{escape_str(identifier)}`'


def remove_trailing_semi(query: str) -> str:
    """
    Drop the run of statement terminators at the very end of the query.  Terminators anywhere else, including
    inside string literals, are left alone
    """
    end = len(query)
    while end > 0 and query[end - 1] == statement_terminator:
        end -= 1
    return query[:end] if end != len(query) else query


def format_query(query: str, fmt: str) -> str:
    return f'{remove_trailing_semi(query.strip())} \nFORMAT {fmt}'


def insert_statement(table: str, fmt: str, column_names: Optional[Sequence[str]] = None) -> str:
    cols = ''
    if column_names:
        cols = f" ({', '.join(quote_identifier(name) for name in column_names)})"
    return f'INSERT INTO {table.strip()}{cols} FORMAT {fmt}'


def format_datetime(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    if value.microsecond:
        return value.strftime('%Y-%m-%d %H:%M:%S.%f')
    return value.strftime('%Y-%m-%d %H:%M:%S')


# pylint: disable=too-many-return-statements
def format_bind_value(value: Any, top_level: bool = True) -> str:
    """
    Format a Python value as a ClickHouse HTTP query parameter.  Nested strings are quoted, top level strings are
    only escaped since the server reads the parameter value in the TSV escaped format
    :param value: Python value
    :param top_level: False for elements of arrays, tuples and maps
    :return: Parameter value string
    """
    if value is None:
        return '\\N'
    if isinstance(value, bool):
        return '1' if value else '0'
    if isinstance(value, float):
        if value != value:  # pylint: disable=comparison-with-itself
            return 'nan'
        if value in (float('inf'), float('-inf')):
            return '+inf' if value > 0 else '-inf'
        return repr(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, Enum):
        return format_bind_value(value.value, top_level)
    if isinstance(value, str):
        return escape_str(value) if top_level else f"'{escape_str(value)}'"
    if isinstance(value, datetime):
        formatted = format_datetime(value)
        return formatted if top_level else f"'{formatted}'"
    if isinstance(value, date):
        return value.isoformat() if top_level else f"'{value.isoformat()}'"
    if isinstance(value, (UUID, IPv4Address, IPv6Address)):
        return str(value) if top_level else f"'{value}'"
    if isinstance(value, (list, set, frozenset)):
        return f"[{','.join(format_bind_value(x, False) for x in value)}]"
    if isinstance(value, tuple):
        return f"({','.join(format_bind_value(x, False) for x in value)})"
    if isinstance(value, Mapping):
        pairs = [f'{format_bind_value(k, False)}:{format_bind_value(v, False)}' for k, v in value.items()]
        return f"{{{','.join(pairs)}}}"
    raise ProgrammingError(f'Unsupported value in query parameters: [{value!r}].')


def bind_params(parameters: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Map query binding values to the param_<name> URL parameters ClickHouse expects"""
    if not parameters:
        return {}
    return {f'param_{key}': format_bind_value(value) for key, value in parameters.items()}


def format_setting(value: Any) -> str:
    if isinstance(value, bool):
        return '1' if value else '0'
    return str(value)


def format_settings(settings: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    if not settings:
        return {}
    return {key: format_setting(value) for key, value in settings.items() if value is not None}
