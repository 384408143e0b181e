import logging
import json as py_json
from collections import OrderedDict
from typing import Any, Union

try:
    import orjson
except ImportError:
    orjson = None

logger = logging.getLogger(__name__)


def _pyjson_to_json(obj: Any) -> bytes:
    return py_json.dumps(obj, separators=(',', ':'), ensure_ascii=False).encode()


def _orjson_to_json(obj: Any) -> bytes:
    return orjson.dumps(obj, option=orjson.OPT_NON_STR_KEYS)  # pylint: disable=no-member


_to_json = OrderedDict()
_to_json['orjson'] = _orjson_to_json if orjson else None
_to_json['python'] = _pyjson_to_json

_from_json = OrderedDict()
_from_json['orjson'] = orjson.loads if orjson else None  # pylint: disable=no-member
_from_json['python'] = py_json.loads

any_to_json = _pyjson_to_json
json_loads = py_json.loads


def set_json_library(impl: str = None):
    """
    Select the library used to write and parse JSON rows.  If not specified the fastest installed library is used
    :param impl: 'orjson' or 'python'
    """
    global any_to_json, json_loads  # pylint: disable=global-statement
    if impl:
        func = _to_json.get(impl)
        if not func:
            raise NotImplementedError(f'JSON library {impl} is not supported')
        any_to_json = func
        json_loads = _from_json[impl]
        return
    for library, func in _to_json.items():
        if func:
            logger.debug('Using %s library for JSON rows', library)
            any_to_json = func
            json_loads = _from_json[library]
            break


def to_json_str(obj: Any) -> str:
    return any_to_json(obj).decode()


def from_json(data: Union[str, bytes]) -> Any:
    return json_loads(data)


set_json_library()
