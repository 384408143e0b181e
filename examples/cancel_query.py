#!/usr/bin/env python -u

import asyncio

from clickhouse_stream.driver import CancellationToken, create_client
from clickhouse_stream.driver.exceptions import QueryCancelledError


async def main():
    async with create_client(compression={'response': True}) as client:
        token = CancellationToken()
        rs = await client.query('SELECT number FROM system.numbers', fmt='JSONCompactEachRow', cancel_token=token)
        seen = 0
        try:
            async for rows in rs.stream():
                seen += len(rows)
                if seen >= 1_000_000:
                    token.cancel(f'Stopped after {seen} rows')
        except QueryCancelledError as ex:
            print(ex)
        # The server may still be running the query
        await client.command(f"KILL QUERY WHERE query_id = '{rs.query_id}'")


asyncio.run(main())
