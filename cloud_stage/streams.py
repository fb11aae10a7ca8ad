"""
Stream layers shared by all storage providers.

Upload streams are built from the inside out:

    gzip (optional) -> EncryptingWriter (optional) -> CommitOnCloseWriter

The innermost writer buffers everything and hands the finished bytes to a
commit callback when the stream is closed, so a remote object is written
only once, complete. Download streams are the mirror image:

    raw -> DecryptingReader (optional) -> gzip reader (optional)
"""

from __future__ import annotations

import gzip
import io
from typing import BinaryIO, Callable, List, Optional

from .crypto import CipherTransform

CHUNK_SIZE = 64 * 1024  # 64KB reads from the transport


class CommitOnCloseWriter(io.RawIOBase):
    """
    In-memory sink that commits its content on close.

    After ``discard()`` further writes are dropped and close commits nothing.
    """

    def __init__(self, commit: Callable[[bytes], None]) -> None:
        super().__init__()
        self._commit = commit
        self._buffer = io.BytesIO()
        self._discarded = False

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        if self.closed:
            raise ValueError("write to closed stream")
        if self._discarded:
            return len(b)
        return self._buffer.write(b)

    def discard(self) -> None:
        self._discarded = True
        self._buffer = io.BytesIO()

    @property
    def discarded(self) -> bool:
        return self._discarded

    def close(self) -> None:
        if self.closed:
            return
        data = None if self._discarded else self._buffer.getvalue()
        self._buffer = io.BytesIO()
        super().close()
        if data is not None:
            self._commit(data)

    def __del__(self) -> None:
        # Never commit from the garbage collector
        if not self.closed:
            self.discard()
            self.close()


class EncryptingWriter(io.RawIOBase):
    """Encrypts everything written to it into ``sink``."""

    def __init__(self, sink: BinaryIO, transform: CipherTransform) -> None:
        super().__init__()
        self._sink = sink
        self._transform = transform

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        if self.closed:
            raise ValueError("write to closed stream")
        data = bytes(b)
        self._sink.write(self._transform.update(data))
        return len(data)

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._sink.write(self._transform.finalize())
        finally:
            super().close()
        self._sink.close()


class DecryptingReader(io.RawIOBase):
    """Lazily decrypts ``raw`` as it is read."""

    def __init__(
        self,
        raw: BinaryIO,
        transform: CipherTransform,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        super().__init__()
        self._raw = raw
        self._transform = transform
        self._chunk_size = chunk_size
        self._pending = b""
        self._eof = False

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        while not self._pending and not self._eof:
            chunk = self._raw.read(self._chunk_size)
            if chunk:
                self._pending = self._transform.update(chunk)
            else:
                self._pending = self._transform.finalize()
                self._eof = True

        n = min(len(b), len(self._pending))
        b[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._raw.close()
        finally:
            super().close()


class GzipReader(gzip.GzipFile):
    """GzipFile that also closes the stream it reads from."""

    def __init__(self, stream: BinaryIO) -> None:
        super().__init__(fileobj=stream, mode="rb")
        self._source = stream

    def close(self) -> None:
        try:
            super().close()
        finally:
            self._source.close()


class UploadStream(io.RawIOBase):
    """
    Writable stream over the upload layers.

    ``close()`` finalizes every layer and commits the object. Leaving a
    ``with`` block by exception calls ``discard()`` instead, so nothing
    reaches the object store.
    """

    def __init__(self, sink: CommitOnCloseWriter, layers: List[BinaryIO]) -> None:
        super().__init__()
        self._sink = sink
        self._layers = layers  # outermost first, sink last

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        if self.closed:
            raise ValueError("write to closed stream")
        self._layers[0].write(b)
        return len(b)

    def close(self) -> None:
        if self.closed:
            return
        try:
            for layer in self._layers:
                layer.close()
        finally:
            super().close()

    def discard(self) -> None:
        """Drop everything written so far and release the layers."""
        if self.closed:
            return
        self._sink.discard()
        self.close()

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.discard()
        else:
            self.close()

    def __del__(self) -> None:
        if not self.closed:
            self.discard()


def build_upload_stream(
    commit: Callable[[bytes], None],
    transform: Optional[CipherTransform] = None,
    compress: bool = False,
) -> UploadStream:
    sink = CommitOnCloseWriter(commit)
    layers: List[BinaryIO] = [sink]
    if transform is not None:
        layers.insert(0, EncryptingWriter(sink, transform))
    if compress:
        layers.insert(0, gzip.GzipFile(fileobj=layers[0], mode="wb"))
    return UploadStream(sink, layers)


def decompressed(stream: BinaryIO, compress: bool) -> BinaryIO:
    return GzipReader(stream) if compress else stream
