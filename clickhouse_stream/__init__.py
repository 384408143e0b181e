from clickhouse_stream.driver import create_client
from clickhouse_stream.common import version as _version


def get_client(**kwargs):
    return create_client(**kwargs)


def version():
    return _version()
