"""Low-level reading of a git object store: scanning bytes, inflating and decoding objects, locating files."""

import logging
import re
import zlib
from collections.abc import Callable, Generator, Iterable, Iterator
from pathlib import Path
from typing import NamedTuple

from .constants import HASH_CHARSET, PACK_EXTENSION
from .objects import GitObject, ObjectKind

logger = logging.getLogger(__name__)

SPACE = 0x20
NUL = 0x00

_HEX_NAME = re.compile(f'[{HASH_CHARSET}]+')


class ObjectError(Exception):
    """Base class for failures confined to a single object."""


class ObjectReadError(ObjectError):
    """An object file could not be read or inflated."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = str(path)
        super().__init__(f'Cannot read object {self.path}: {reason}')


class DecodeError(ObjectError):
    """An object's header or content does not fit its grammar."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f'Cannot decode object {name}: {reason}')


class MalformedTreeError(DecodeError):
    """Tree content is not a sequence of complete entries."""


class MalformedCommitError(DecodeError):
    """Commit content does not follow the commit header grammar."""


class StoreUnavailableError(Exception):
    """The store root cannot be read. Fatal for the current scan."""


class RawObject(NamedTuple):
    """An inflated object as produced by the locator, before decoding.

    `name` is only known up front for packed objects; loose objects derive it from
    their location."""

    location: str
    data: bytes
    name: str | None = None


def find_byte(target: int, start: int, data: bytes) -> int | None:
    """Find the first occurrence of a byte at or after an offset.

    :param target: The byte value to look for.
    :param start: The offset to start scanning from.
    :param data: The buffer to scan.
    :return: The index of the first match, or None if the buffer is exhausted."""
    if start < 0 or start >= len(data):
        return None

    index = data.find(bytes((target,)), start)
    return index if index != -1 else None


def read_object_file(path: Path | str) -> bytes:
    """Read a loose object file and inflate the whole zlib stream.

    :param path: The path of the object file.
    :return: The inflated bytes, header included.
    :raises ObjectReadError: If the file cannot be read or the stream is corrupt or truncated."""
    try:
        compressed = Path(path).read_bytes()
    except OSError as e:
        raise ObjectReadError(path, e.strerror or str(e)) from e

    decompressor = zlib.decompressobj()
    try:
        data = decompressor.decompress(compressed)
        data += decompressor.flush()
    except zlib.error as e:
        raise ObjectReadError(path, str(e)) from e

    if not decompressor.eof:
        raise ObjectReadError(path, 'truncated zlib stream')

    return data


def object_name(path: Path | str) -> str:
    """Rebuild a loose object's id from its fan-out directory and file name."""
    path = Path(path)
    return path.parent.name + path.name


def decode_object(data: bytes, name: str, location: str = '') -> GitObject:
    """Split an inflated object into its header fields and content.

    The header is `<type> SP <size> NUL`. The declared size is kept as text and a
    disagreement with the real content length is recorded as a warning only.

    :param data: The inflated object bytes.
    :param name: The object id.
    :param location: Where the object was read from.
    :return: The decoded object.
    :raises DecodeError: If the header has no type or size terminator."""
    space_index = find_byte(SPACE, 0, data)
    if space_index is None:
        raise DecodeError(name, 'missing space after object type')

    nul_index = find_byte(NUL, space_index + 1, data)
    if nul_index is None:
        raise DecodeError(name, 'missing NUL after object size')

    try:
        type_name = data[:space_index].decode('ascii').strip()
        size = data[space_index:nul_index].decode('ascii').strip()
    except UnicodeDecodeError as e:
        raise DecodeError(name, 'non-ASCII object header') from e

    content = data[nul_index + 1:]

    warnings: tuple[str, ...] = ()
    if not size.isdigit() or int(size) != len(content):
        warning = f'size mismatch: header says {size!r}, content has {len(content)} bytes'
        logger.warning('Object %s: %s', name, warning)
        warnings = (warning,)

    return GitObject(ObjectKind.from_type_name(type_name), size, location, name, content, type_name, warnings)


def unparsed_object(data: bytes, name: str, location: str, reason: str) -> GitObject:
    """Wrap bytes whose header could not be decoded as an OTHER object carrying the reason."""
    return GitObject(ObjectKind.OTHER, '', location, name, data, '', (reason,))


def decode_raw_object(raw: RawObject) -> GitObject:
    """Decode a located object, falling back to an unparsed OTHER object on a bad header."""
    name = raw.name or object_name(raw.location)
    try:
        return decode_object(raw.data, name, raw.location)
    except DecodeError as e:
        logger.warning('%s', e)
        return unparsed_object(raw.data, name, raw.location, e.reason)


def load_loose_object(path: Path | str) -> GitObject:
    """Read and decode one loose object file.

    :param path: The path of the object file.
    :return: The decoded object.
    :raises ObjectReadError: If the file cannot be read or inflated.
    :raises DecodeError: If the header is malformed."""
    return decode_object(read_object_file(path), object_name(path), str(path))


def _walk(objects_dir: Path) -> Iterator[tuple[Path, list[str], list[str]]]:
    if not objects_dir.is_dir():
        msg = f'Object directory does not exist or is not a directory: {objects_dir}'
        raise StoreUnavailableError(msg)

    def _on_error(error: OSError) -> None:
        if Path(error.filename or '') == objects_dir:
            msg = f'Cannot read object directory {objects_dir}'
            raise StoreUnavailableError(msg) from error
        logger.warning('Skipping unreadable directory %s: %s', error.filename, error.strerror)

    return objects_dir.walk(on_error=_on_error)


def list_objects(objects_dir: Path | str) -> Generator[Path, None, None]:
    """Lazily list the loose object files below an object directory.

    A candidate is any file whose name is made of hex digits only.

    :param objects_dir: The object directory of the store.
    :return: A generator of object file paths.
    :raises StoreUnavailableError: If the object directory cannot be read."""
    for dirpath, _, filenames in _walk(Path(objects_dir)):
        for filename in filenames:
            if _HEX_NAME.fullmatch(filename):
                yield dirpath / filename


def list_packs(objects_dir: Path | str) -> Generator[Path, None, None]:
    """Lazily list the pack archives below an object directory.

    :raises StoreUnavailableError: If the object directory cannot be read."""
    for dirpath, _, filenames in _walk(Path(objects_dir)):
        for filename in filenames:
            if filename.endswith(PACK_EXTENSION):
                yield dirpath / filename


def _read_loose(path: Path) -> RawObject | None:
    try:
        return RawObject(str(path), read_object_file(path), object_name(path))
    except ObjectReadError as e:
        logger.warning('Skipping object: %s', e)
        return None


def iter_raw_objects(
        objects_dir: Path | str,
        mapper: Callable[[Callable[[Path], RawObject | None], Iterable[Path]], Iterable[RawObject | None]] = map,
) -> Generator[RawObject, None, None]:
    """Iterate over every object of the store, loose ones first, then packed ones.

    Loose files that cannot be read are logged and skipped. Reading loose files goes
    through `mapper`, so passing an executor's `map` reads and inflates them in parallel.

    :param objects_dir: The object directory of the store.
    :param mapper: A `map`-like callable used to read loose files.
    :return: A generator of located objects.
    :raises StoreUnavailableError: If the object directory cannot be read."""
    objects_dir = Path(objects_dir)

    for raw in mapper(_read_loose, list(list_objects(objects_dir))):
        if raw is not None:
            yield raw

    if next(list_packs(objects_dir), None) is not None:
        from .pack import iter_packed_objects

        yield from iter_packed_objects(objects_dir)
