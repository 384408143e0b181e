import io
import gzip
import zlib
from abc import ABC, abstractmethod
from typing import Optional

import lz4.frame
import zstandard

from clickhouse_stream.driver.exceptions import NotSupportedError

available_compression = ['lz4', 'zstd', 'gzip', 'deflate']
default_request_compression = 'gzip'


class Compressor(ABC):
    """Incremental compressor for a single request body"""
    encoding: str

    @abstractmethod
    def compress_block(self, block: bytes) -> bytes:
        pass

    @abstractmethod
    def flush(self) -> bytes:
        pass

    def compress(self, data: bytes) -> bytes:
        return self.compress_block(data) + self.flush()


class ZlibCompressor(Compressor):
    def __init__(self, encoding: str, level: int = 6):
        self.encoding = encoding
        wbits = 16 + zlib.MAX_WBITS if encoding == 'gzip' else zlib.MAX_WBITS
        self._compressor = zlib.compressobj(level, zlib.DEFLATED, wbits)

    def compress_block(self, block: bytes) -> bytes:
        return self._compressor.compress(block)

    def flush(self) -> bytes:
        return self._compressor.flush()


class ZstdCompressor(Compressor):
    encoding = 'zstd'

    def __init__(self, level: int = 3):
        self._compressor = zstandard.ZstdCompressor(level=level).compressobj()

    def compress_block(self, block: bytes) -> bytes:
        return self._compressor.compress(block)

    def flush(self) -> bytes:
        return self._compressor.flush()


class Lz4Compressor(Compressor):
    encoding = 'lz4'

    def __init__(self):
        self._compressor = lz4.frame.LZ4FrameCompressor()
        self._started = False

    def compress_block(self, block: bytes) -> bytes:
        header = b''
        if not self._started:
            header = self._compressor.begin()
            self._started = True
        return header + self._compressor.compress(block)

    def flush(self) -> bytes:
        if not self._started:
            self._started = True
            return self._compressor.begin() + self._compressor.flush()
        return self._compressor.flush()


def get_compressor(encoding: str) -> Compressor:
    """
    Build a new compressor.  Compressors hold state for exactly one body
    :param encoding: Compression method name as used in the Content-Encoding header
    """
    if encoding in ('gzip', 'deflate'):
        return ZlibCompressor(encoding)
    if encoding == 'zstd':
        return ZstdCompressor()
    if encoding == 'lz4':
        return Lz4Compressor()
    raise NotSupportedError(f"Unsupported compression type: '{encoding}'. "
                           f"Supported compression: {', '.join(available_compression)}")


def get_decompressor(encoding: str):
    """Create incremental decompressor for encoding."""
    if encoding == 'gzip':
        return zlib.decompressobj(16 + zlib.MAX_WBITS)
    if encoding == 'deflate':
        return zlib.decompressobj()
    if encoding == 'zstd':
        return zstandard.ZstdDecompressor().decompressobj()
    if encoding == 'lz4':
        return lz4.frame.LZ4FrameDecompressor()
    raise NotSupportedError(f"Unsupported compression type: '{encoding}'. "
                           f"Supported compression: {', '.join(available_compression)}")


def decompress_response(data: bytes, encoding: Optional[str]) -> bytes:
    """Decompress a complete response body based on its Content-Encoding header."""
    if not encoding or encoding == 'identity':
        return data
    if encoding == 'lz4':
        return lz4.frame.decompress(data)
    if encoding == 'zstd':
        zstd_decom = zstandard.ZstdDecompressor()
        return zstd_decom.stream_reader(io.BytesIO(data)).read()
    if encoding == 'gzip':
        return gzip.decompress(data)
    if encoding == 'deflate':
        return zlib.decompress(data)
    raise NotSupportedError(f"Unsupported compression type: '{encoding}'. "
                           f"Supported compression: {', '.join(available_compression)}")
