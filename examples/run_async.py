#!/usr/bin/env python -u

import asyncio
from datetime import datetime

from clickhouse_stream.driver import create_client

QUERIES = 10
MAX_CONNECTIONS = 2


async def concurrent_queries():
    test_query = 'SELECT sleep(2)'
    async with create_client(max_open_connections=MAX_CONNECTIONS) as client:
        start = datetime.now()

        async def run_query(num: int):
            rs = await client.query(test_query, fmt='JSONEachRow')
            await rs.json()
            print(f'Completed query {num}, '
                  f'elapsed ms since start: {int((datetime.now() - start).total_seconds() * 1000)}')

        await asyncio.gather(*[run_query(num) for num in range(QUERIES)])


asyncio.run(concurrent_queries())
