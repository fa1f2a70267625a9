"""Record source: turn an NDJSON byte stream into trimmed records."""
import gzip
import sys
import zlib
from typing import BinaryIO, Iterable, Iterator

from .exceptions import RecordSourceError


def open_input(path: str, gzipped: bool = False) -> BinaryIO:
    """Open ``path`` (``-`` for stdin) for binary reading, gunzipping on the fly if asked."""
    try:
        if path == "-":
            stream = sys.stdin.buffer
            return gzip.GzipFile(fileobj=stream, mode="rb") if gzipped else stream
        if gzipped:
            return gzip.open(path, "rb")
        return open(path, "rb")
    except OSError as e:
        raise RecordSourceError(f"cannot open {path}: {e}") from e


def iter_records(stream: Iterable[bytes]) -> Iterator[str]:
    """Yield each non-blank line, decoded as UTF-8 and stripped.

    Read, decompression and decoding errors are fatal and surface as
    RecordSourceError.
    """
    lineno = 0
    it = iter(stream)
    while True:
        try:
            raw = next(it)
        except StopIteration:
            return
        except (OSError, EOFError, zlib.error) as e:
            raise RecordSourceError(f"read error after line {lineno}: {e}") from e
        lineno += 1
        try:
            line = raw.decode("utf-8").strip() if isinstance(raw, bytes) else raw.strip()
        except UnicodeDecodeError as e:
            raise RecordSourceError(f"line {lineno} is not valid UTF-8: {e}") from e
        if not line:
            continue
        yield line
