import pytest

from clickhouse_stream import common, json_impl


@pytest.fixture(autouse=True)
def clean_global_state():
    yield
    common.reset_settings()
    json_impl.set_json_library()
