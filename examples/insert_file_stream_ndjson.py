#!/usr/bin/env python -u

import asyncio
import os
import sys
import tempfile

from clickhouse_stream.driver import RawStream, RecordStream, create_client
from clickhouse_stream.json_impl import from_json

TABLE_NAME = 'insert_file_stream_ndjson'


def write_sample_file(path: str, rows: int = 1000):
    with open(path, 'w', encoding='utf-8') as sample:
        for ix in range(rows):
            sample.write(f'["{ix}"]\n')


def parsed_rows(path: str):
    with open(path, encoding='utf-8') as source:
        for line in source:
            yield from_json(line)


async def main(filename: str):
    async with create_client() as client:
        await client.command(f'DROP TABLE IF EXISTS {TABLE_NAME}')
        await client.command(f'CREATE TABLE {TABLE_NAME} (id UInt64) ENGINE MergeTree() ORDER BY (id)')

        # Records are parsed and re-encoded one at a time
        await client.insert(TABLE_NAME, RecordStream(parsed_rows(filename)), fmt='JSONCompactEachRow')

        # The file is already in the insert format, so its bytes can be sent unchanged
        with open(filename, 'rb') as source:
            result = await client.insert(TABLE_NAME, RawStream(source), fmt='JSONCompactEachRow')
        print(f'Inserted {result.summary.written_rows} rows with query {result.query_id}')

        rs = await client.query(f'SELECT * FROM {TABLE_NAME}', fmt='JSONEachRow')
        async for rows in rs.stream():
            for row in rows:
                print(row.json())


if __name__ == '__main__':
    if len(sys.argv) > 1:
        asyncio.run(main(sys.argv[1]))
    else:
        with tempfile.TemporaryDirectory() as tmp_dir:
            data_file = os.path.join(tmp_dir, 'data.ndjson')
            write_sample_file(data_file)
            asyncio.run(main(data_file))
