"""Reading objects out of pack archives.

Delta resolution and index handling are delegated to dulwich; this module only
turns what dulwich reconstructs into located raw objects."""

import logging
import os
from collections.abc import Generator
from pathlib import Path

from dulwich.errors import ApplyDeltaError, ChecksumMismatch, ObjectFormatException
from dulwich.object_store import DiskObjectStore
from dulwich.objects import ShaFile

from .plumbing import ObjectReadError, RawObject

logger = logging.getLogger(__name__)

# What dulwich raises for a missing, truncated or corrupt pack
PACK_ERRORS = (OSError, ValueError, KeyError, ApplyDeltaError, ChecksumMismatch, ObjectFormatException)


def packed_raw_object(sha_file: ShaFile, location: str) -> RawObject:
    """Rebuild the inflated `<type> <size>\\0<content>` form of a packed object.

    :param sha_file: The object as reconstructed by dulwich.
    :param location: The pack archive the object came from.
    :return: The located raw object, its id taken from the pack."""
    content = sha_file.as_raw_string()
    header = sha_file.type_name + b' ' + str(len(content)).encode('ascii') + b'\x00'
    return RawObject(location, header + content, sha_file.id.decode('ascii'))


def iter_packed_objects(objects_dir: Path | str) -> Generator[RawObject, None, None]:
    """Iterate over every object stored in the pack archives of an object directory.

    A pack that cannot be read is logged and skipped; objects already yielded from it stay.

    :param objects_dir: The object directory of the store.
    :return: A generator of located raw objects.
    :raises ObjectReadError: If the pack directory itself cannot be listed."""
    store = DiskObjectStore(str(objects_dir))
    try:
        try:
            packs = store.packs
        except PACK_ERRORS as e:
            raise ObjectReadError(store.pack_dir, str(e)) from e

        for pack in packs:
            location = str(store.pack_dir)
            count = 0
            try:
                location = os.path.join(store.pack_dir, os.path.basename(pack.data.filename))
                for sha_file in pack.iterobjects():
                    count += 1
                    yield packed_raw_object(sha_file, location)
            except PACK_ERRORS as e:
                logger.warning('%s', ObjectReadError(location, f'{e!r} after {count} objects'))
                continue

            logger.debug('Read %d objects from %s', count, location)
    finally:
        store.close()
