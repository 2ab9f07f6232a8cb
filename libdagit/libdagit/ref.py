"""Reading HEAD and branch pointers."""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath

from .constants import SYMBOLIC_REF_PREFIX

logger = logging.getLogger(__name__)


class RefError(Exception):
    """Exception raised for unreadable references."""


class HeadMode(Enum):
    """Whether HEAD names a branch or a commit."""

    SYMBOLIC = 'ref'
    DETACHED = 'detached'


@dataclass(frozen=True)
class Head:
    """The HEAD pointer. `value` is a ref path when symbolic, a commit id when detached."""

    mode: HeadMode
    value: str

    def to_dict(self) -> dict[str, str]:
        return {'type': self.mode.value, 'value': self.value}


@dataclass(frozen=True)
class Branch:
    """A named pointer to a commit."""

    name: str
    commit: str

    def to_dict(self) -> dict[str, str]:
        return {'name': self.name, 'commit': self.commit}


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding='utf-8', errors='replace')
    except OSError as e:
        msg = f'Cannot read reference file {path}'
        raise RefError(msg) from e


def parse_head(text: str) -> Head:
    """Interpret the content of a HEAD file.

    :param text: The file content.
    :return: A symbolic Head for `ref: <path>` content, a detached Head otherwise."""
    if text.startswith(SYMBOLIC_REF_PREFIX):
        return Head(HeadMode.SYMBOLIC, text[len(SYMBOLIC_REF_PREFIX):].strip())
    return Head(HeadMode.DETACHED, text.strip())


def read_head(head_file: Path) -> Head:
    """Read the HEAD pointer.

    :param head_file: The path to the HEAD file.
    :return: The parsed Head.
    :raises RefError: If the HEAD file cannot be read."""
    return parse_head(_read_text(head_file))


def list_branches(heads_dir: Path) -> list[Branch]:
    """List every branch pointer below the heads directory, sorted by name.

    A branch is named by its file name, so `refs/heads/feature/x` is the branch `x`.
    Branch files that cannot be read are logged and skipped.

    :param heads_dir: The path to the heads directory.
    :return: The branches. A missing heads directory yields no branches."""
    if not heads_dir.is_dir():
        return []

    branches: list[Branch] = []
    for ref_file in heads_dir.rglob('*'):
        if not ref_file.is_file():
            continue
        try:
            branches.append(Branch(ref_file.name, _read_text(ref_file).strip()))
        except RefError as e:
            logger.warning('Skipping branch: %s', e)

    branches.sort(key=lambda branch: branch.name)
    return branches


def branch_name(head: Head) -> str | None:
    """Return the branch a symbolic HEAD points at, or None for a detached HEAD.

    :param head: The HEAD pointer.
    :return: The last component of the ref path, matching how branches are named."""
    if head.mode is not HeadMode.SYMBOLIC:
        return None
    return PurePosixPath(head.value).name
