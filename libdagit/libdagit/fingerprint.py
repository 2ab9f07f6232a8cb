"""A cheap checksum of the repository metadata directory, used to notice changes."""

import hashlib
import logging
from pathlib import Path

from .constants import PACK_ARCHIVE_EXTENSIONS
from .plumbing import StoreUnavailableError

logger = logging.getLogger(__name__)


def _file_digest(path: Path) -> bytes:
    if path.suffix in PACK_ARCHIVE_EXTENSIONS:
        # Pack archives never change in place; their stat data is enough
        stat = path.stat()
        return f'{stat.st_size}:{stat.st_mtime_ns}'.encode('ascii')

    return hashlib.md5(path.read_bytes(), usedforsecurity=False).digest()


def fingerprint(repo_path: Path | str) -> str:
    """Compute an order-independent checksum of everything below the repository directory.

    It changes whenever a file is added, removed or modified (loose objects, packs,
    refs, HEAD). It says nothing about what changed.

    :param repo_path: The repository metadata directory.
    :return: A hex digest.
    :raises StoreUnavailableError: If the directory cannot be read."""
    repo_path = Path(repo_path)
    if not repo_path.is_dir():
        msg = f'Repository directory does not exist or is not a directory: {repo_path}'
        raise StoreUnavailableError(msg)

    def _on_error(error: OSError) -> None:
        if Path(error.filename or '') == repo_path:
            msg = f'Cannot read repository directory {repo_path}'
            raise StoreUnavailableError(msg) from error
        logger.warning('Fingerprint skips unreadable directory %s', error.filename)

    files = sorted(dirpath / filename
                   for dirpath, _, filenames in repo_path.walk(on_error=_on_error)
                   for filename in filenames)

    checksum = hashlib.md5(usedforsecurity=False)
    for path in files:
        try:
            digest = _file_digest(path)
        except OSError:
            # Removed while walking
            logger.debug('Fingerprint skips vanished file %s', path)
            continue
        checksum.update(path.relative_to(repo_path).as_posix().encode('utf-8'))
        checksum.update(b'\x00')
        checksum.update(digest)

    return checksum.hexdigest()
