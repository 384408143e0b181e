import sys
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as dist_version
from typing import Any, Sequence, Optional, Dict

from clickhouse_stream.driver.exceptions import ProgrammingError


def version():
    try:
        return dist_version('clickhouse-stream')
    except PackageNotFoundError:
        return 'development'


@dataclass
class CommonSetting:
    name: str
    options: Sequence[Any]
    default: Any
    value: Optional[Any] = None


_common_settings: Dict[str, CommonSetting] = {}


def build_client_name(client_name: Optional[str]):
    product_name = get_setting('product_name')
    product_name = product_name.strip() + ' ' if product_name else ''
    client_name = client_name.strip() + ' ' if client_name else ''
    py_version = sys.version.split(' ', maxsplit=1)[0]
    return f'{client_name}{product_name}clickhouse-stream/{version()} (lv:py/{py_version}; mode:async; os:{sys.platform})'


def get_setting(name: str):
    setting = _common_settings.get(name)
    if setting is None:
        raise ProgrammingError(f'Unrecognized common setting {name}')
    return setting.value if setting.value is not None else setting.default


def set_setting(name: str, value: Any):
    setting = _common_settings.get(name)
    if setting is None:
        raise ProgrammingError(f'Unrecognized common setting {name}')
    if setting.options and value not in setting.options:
        raise ProgrammingError(f'Unrecognized option {value!r} for common setting {name}')
    if value == setting.default:
        setting.value = None
    else:
        setting.value = value


def reset_settings():
    """Restore every common setting to its default"""
    for setting in _common_settings.values():
        setting.value = None


def _init_common(name: str, options: Sequence[Any], default: Any):
    _common_settings[name] = CommonSetting(name, options, default)


_init_common('autogenerate_query_id', (True, False), True)
_init_common('product_name', (), '')
_init_common('insert_chunk_size', (), 1024 * 1024)
