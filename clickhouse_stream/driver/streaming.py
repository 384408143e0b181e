import asyncio
import logging
from typing import AsyncIterator, Optional

import aiohttp

from clickhouse_stream.driver.cancel import CancellationToken, cancellable
from clickhouse_stream.driver.compression import Compressor, get_decompressor
from clickhouse_stream.driver.exceptions import OperationalError, QueryCancelledError, QueryTimeoutError, \
    StreamClosedError

logger = logging.getLogger(__name__)

__all__ = ['ResponseStream', 'compress_stream']


# pylint: disable=too-many-instance-attributes
class ResponseStream:
    """
    Body of a ClickHouse HTTP response, read one chunk at a time.  Content is decompressed according to the
    Content-Encoding header.  The stream must be drained or closed to give the connection back to the pool.  A stream
    that is left unread for longer than idle_timeout is released and the next read raises QueryTimeoutError
    """

    READ_BUFFER_SIZE = 512 * 1024

    # pylint: disable=too-many-arguments
    def __init__(self,
                 response: aiohttp.ClientResponse,
                 query_id: str = '',
                 encoding: Optional[str] = None,
                 cancel_token: Optional[CancellationToken] = None,
                 idle_timeout: Optional[float] = None,
                 log: logging.Logger = logger):
        self.response = response
        self.query_id = query_id
        self.encoding = encoding
        self._log = log
        self._token = cancel_token
        self._idle_timeout = idle_timeout
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._decompressor = get_decompressor(encoding) if encoding and encoding != 'identity' else None
        self._closed = False
        self._completed = False
        self._error: Optional[Exception] = None
        if cancel_token is not None:
            cancel_token.add_callback(self._on_cancel)
        self._arm_idle_timer()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def completed(self) -> bool:
        """True once the full body has been read"""
        return self._completed

    async def read_chunk(self) -> bytes:
        """
        Read the next decompressed chunk of the body
        :return: Non-empty bytes, or b'' once the body is exhausted
        """
        if self._completed:
            return b''
        if self._closed:
            if self._error:
                raise self._error
            raise StreamClosedError
        self._cancel_idle_timer()
        while True:
            chunk = await self._read_raw()
            if not chunk:
                final = self._finish()
                return final
            if self._decompressor is None:
                self._arm_idle_timer()
                return chunk
            try:
                data = self._decompressor.decompress(chunk)
            except Exception as ex:  # pylint: disable=broad-exception-caught
                self._release(ex)
                raise OperationalError(f'Failed to decompress {self.encoding} response: {ex}') from ex
            if data:
                self._arm_idle_timer()
                return data

    async def _read_raw(self) -> bytes:
        try:
            return await cancellable(self.response.content.read(self.READ_BUFFER_SIZE), self._token)
        except QueryCancelledError as ex:
            self._release(ex)
            raise
        except asyncio.TimeoutError as ex:
            err = QueryTimeoutError(f'Timed out reading response for query {self.query_id}')
            self._release(err)
            raise err from ex
        except aiohttp.ClientError as ex:
            if self._error:
                raise self._error from ex
            err = OperationalError(f'Network error while streaming response for query {self.query_id}: {ex}')
            self._release(err)
            raise err from ex

    def _finish(self) -> bytes:
        final = b''
        if self._decompressor is not None and hasattr(self._decompressor, 'flush'):
            final = self._decompressor.flush()
        self._completed = True
        self._closed = True
        self._detach()
        self.response.release()
        return final

    async def read_all(self) -> bytes:
        chunks = []
        while True:
            chunk = await self.read_chunk()
            if not chunk:
                break
            chunks.append(chunk)
        return b''.join(chunks)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.read_chunk()
            if not chunk:
                break
            yield chunk

    def close(self):
        """Release the response.  Safe to call at any time and more than once"""
        if not self._closed:
            self._release()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _release(self, error: Optional[Exception] = None):
        if self._closed:
            return
        self._closed = True
        self._error = error
        self._detach()
        if not self._completed:
            self.response.close()

    def _detach(self):
        self._cancel_idle_timer()
        if self._token is not None:
            self._token.remove_callback(self._on_cancel)

    def _on_cancel(self):
        self._log.debug('Releasing response stream for cancelled query %s', self.query_id)
        self._release(QueryCancelledError(self._token.reason))

    def _arm_idle_timer(self):
        if not self._idle_timeout or self._closed:
            return
        loop = asyncio.get_running_loop()
        self._idle_handle = loop.call_later(self._idle_timeout, self._expire)

    def _cancel_idle_timer(self):
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _expire(self):
        self._idle_handle = None
        if self._closed:
            return
        self._log.warning('Response stream for query %s was not read for %s seconds, releasing the connection',
                          self.query_id, self._idle_timeout)
        self._release(QueryTimeoutError(
            f'Response stream for query {self.query_id} was not consumed within {self._idle_timeout} seconds'))


async def compress_stream(source: AsyncIterator[bytes], compressor: Compressor) -> AsyncIterator[bytes]:
    """Compress an insert body chunk by chunk"""
    async for chunk in source:
        block = compressor.compress_block(chunk)
        if block:
            yield block
    final = compressor.flush()
    if final:
        yield final
