"""libdagit repository access."""

import logging
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import wraps
from pathlib import Path
from types import MappingProxyType
from typing import Concatenate

from .constants import DEFAULT_MAX_WORKERS, DEFAULT_REPO_DIR, HEAD_FILE, HEADS_DIR, OBJECTS_SUBDIR, REFS_DIR
from .fingerprint import fingerprint
from .graph import GraphDocument, build_snapshot, head_target
from .objects import Commit, GitObject, ObjectKind
from .parsers import parse_commit, parse_tree
from .plumbing import DecodeError, decode_raw_object, iter_raw_objects
from .ref import Branch, Head, RefError, branch_name, list_branches, read_head

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Exception raised for repository-related errors."""


class RepositoryNotFoundError(RepositoryError):
    """Exception raised when a repository is not found."""


class ObjectNotFoundError(RepositoryError):
    """Exception raised when an id is not in the object map."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f'Object {name} does not exist in the repository')


class DanglingReferenceError(RepositoryError):
    """A tree, commit or ref points at an id that is not in the object map.

    Usually reported rather than raised: stores can legitimately be incomplete."""

    def __init__(self, source: str, target: str) -> None:
        self.source = source
        self.target = target
        super().__init__(f'{source} references missing object {target}')


@dataclass(frozen=True)
class StoreState:
    """One generation of the store: the object map together with the refs read alongside it."""

    objects: Mapping[str, GitObject]
    head: Head | None
    branches: tuple[Branch, ...]


@dataclass
class LogEntry:
    """A commit together with its id."""

    commit_ref: str
    commit: Commit


class Repository:
    """Read-only view of a git repository's object store.

    Nothing is read from disk until `open()` is called. After that the object map and
    the refs read with it are only ever replaced together by `refresh()`, so readers
    holding the previous generation keep a consistent view."""

    def __init__(self, working_dir: Path | str, repo_dir: Path | str | None = None,
                 max_workers: int | None = None) -> None:
        """Initialize a Repository instance.

        :param working_dir: The directory holding the repository directory.
        :param repo_dir: The name of the repository directory within the working directory. Defaults to '.git'.
            Pass '.' for a bare repository.
        :param max_workers: The upper bound on worker threads for scans and snapshots.
            Defaults to the number of CPUs."""
        self.working_dir = Path(working_dir)

        if repo_dir is None:
            self.repo_dir = Path(DEFAULT_REPO_DIR)
        else:
            self.repo_dir = Path(repo_dir)

        self.max_workers = max_workers or DEFAULT_MAX_WORKERS

        self._lock = threading.Lock()
        self._state: StoreState | None = None
        self._fingerprint: str | None = None

    def exists(self) -> bool:
        """Check if the repository exists in the working directory.

        :return: True if the repository exists, False otherwise."""
        return self.repo_path().is_dir()

    def repo_path(self) -> Path:
        """Get the path to the repository directory.

        :return: The path to the repository directory."""
        return self.working_dir / self.repo_dir

    def objects_dir(self) -> Path:
        """Get the path to the objects directory within the repository.

        :return: The path to the objects directory."""
        return self.repo_path() / OBJECTS_SUBDIR

    def refs_dir(self) -> Path:
        """Get the path to the refs directory within the repository.

        :return: The path to the refs directory."""
        return self.repo_path() / REFS_DIR

    def heads_dir(self) -> Path:
        """Get the path to the heads directory within the repository.

        :return: The path to the heads directory."""
        return self.refs_dir() / HEADS_DIR

    def head_file(self) -> Path:
        """Get the path to the HEAD file within the repository.

        :return: The path to the HEAD file."""
        return self.repo_path() / HEAD_FILE

    @staticmethod
    def requires_repo[**P, R](func: Callable[Concatenate['Repository', P], R]) -> \
            Callable[Concatenate['Repository', P], R]:
        """Decorate a Repository method to ensure that the repository exists before executing the method.

        :param func: The method to decorate.
        :return: A wrapper function that checks for the repository's existence."""

        @wraps(func)
        def _verify_repo(self: 'Repository', *args: P.args, **kwargs: P.kwargs) -> R:
            if not self.exists():
                msg = f'Repository not found at {self.repo_path()}'
                raise RepositoryNotFoundError(msg)

            return func(self, *args, **kwargs)

        return _verify_repo

    @requires_repo
    def open(self) -> 'Repository':
        """Scan the whole object store and take the initial fingerprint.

        :return: This repository, for chaining.
        :raises StoreUnavailableError: If the object store cannot be read.
        :raises RepositoryNotFoundError: If the repository does not exist."""
        self.refresh()
        return self

    @requires_repo
    def refresh(self) -> None:
        """Rescan the object store and the refs, and replace both wholesale.

        Unreadable objects are skipped and objects with a broken header are kept as
        OTHER. If the store itself cannot be read, the previous state is left as is.

        :raises StoreUnavailableError: If the object store cannot be read.
        :raises RepositoryNotFoundError: If the repository does not exist."""
        # Taken before the scan so a write racing with it shows up on the next check
        current = fingerprint(self.repo_path())
        # Refs before objects: git writes a commit before moving a ref onto it
        head, branches = self._read_refs()
        objects = self._scan()

        state = StoreState(MappingProxyType(objects), head, tuple(branches))
        with self._lock:
            self._state = state
            self._fingerprint = current

        logger.debug('Loaded %d objects and %d branches from %s', len(objects), len(branches), self.repo_path())

    def _read_refs(self) -> tuple[Head | None, list[Branch]]:
        try:
            head: Head | None = self.head()
        except (RepositoryError, RefError) as e:
            logger.warning('Repository has no readable HEAD: %s', e)
            head = None
        return head, self.branches()

    def _scan(self) -> dict[str, GitObject]:
        objects: dict[str, GitObject] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for raw in iter_raw_objects(self.objects_dir(), executor.map):
                obj = decode_raw_object(raw)
                objects[obj.name] = obj
        return objects

    @requires_repo
    def changed(self) -> bool:
        """Check whether anything in the repository directory changed since the last check.

        A positive answer is given once per change: the new fingerprint is stored.

        :return: True if the store changed, False otherwise.
        :raises StoreUnavailableError: If the repository directory cannot be read.
        :raises RepositoryNotFoundError: If the repository does not exist."""
        current = fingerprint(self.repo_path())

        with self._lock:
            if current == self._fingerprint:
                return False
            self._fingerprint = current
            return True

    @property
    def state(self) -> StoreState:
        """The generation loaded by the last refresh.

        :raises RepositoryError: If the repository has not been opened."""
        state = self._state
        if state is None:
            msg = f'Repository at {self.repo_path()} has not been opened'
            raise RepositoryError(msg)
        return state

    @property
    def objects(self) -> Mapping[str, GitObject]:
        """The current object map, read-only.

        :raises RepositoryError: If the repository has not been opened."""
        return self.state.objects

    @property
    def checksum(self) -> str | None:
        """The fingerprint the current state was compared against last."""
        return self._fingerprint

    def get(self, name: str) -> GitObject | None:
        """Get an object by id, or None if it is not in the store."""
        return self.objects.get(name)

    def lookup(self, name: str) -> GitObject:
        """Get an object by id.

        :param name: The object id.
        :return: The object.
        :raises ObjectNotFoundError: If the object is not in the store.
        :raises RepositoryError: If the repository has not been opened."""
        obj = self.get(name)
        if obj is None:
            raise ObjectNotFoundError(name)
        return obj

    @requires_repo
    def head(self) -> Head:
        """Read the HEAD pointer of the repository from disk.

        :return: The HEAD pointer, symbolic or detached.
        :raises RepositoryError: If the HEAD file does not exist.
        :raises RefError: If the HEAD file cannot be read.
        :raises RepositoryNotFoundError: If the repository does not exist."""
        head_file = self.head_file()
        if not head_file.exists():
            msg = 'HEAD ref file does not exist'
            raise RepositoryError(msg)

        return read_head(head_file)

    @requires_repo
    def branches(self) -> list[Branch]:
        """Read all branches of the repository from disk, sorted by name.

        Unreadable branch files are logged and skipped.

        :return: The branches.
        :raises RepositoryNotFoundError: If the repository does not exist."""
        return list_branches(self.heads_dir())

    @requires_repo
    def branch_exists(self, name: str) -> bool:
        """Check if a branch exists in the repository.

        :param name: The path of the branch file, relative to the heads directory.
        :return: True if the branch exists, False otherwise.
        :raises RepositoryNotFoundError: If the repository does not exist."""
        return (self.heads_dir() / name).is_file()

    def current_branch(self) -> Branch | None:
        """Get the branch HEAD pointed at when the store was last refreshed.

        :return: The branch, or None if HEAD is detached.
        :raises RepositoryError: If there was no readable HEAD.
        :raises DanglingReferenceError: If HEAD names a branch that does not exist."""
        state = self.state
        if state.head is None:
            msg = 'HEAD ref file does not exist or cannot be read'
            raise RepositoryError(msg)

        name = branch_name(state.head)
        if name is None:
            return None

        for branch in state.branches:
            if branch.name == name:
                return branch
        raise DanglingReferenceError('HEAD', state.head.value)

    def current_commit(self) -> Commit:
        """Get the commit HEAD resolved to when the store was last refreshed.

        :return: The parsed commit.
        :raises DanglingReferenceError: If HEAD does not resolve to a commit in the store.
        :raises MalformedCommitError: If that commit cannot be parsed."""
        branch = self.current_branch()
        commit_ref = branch.commit if branch else self.state.head.value

        obj = self.get(commit_ref)
        if obj is None or obj.kind is not ObjectKind.COMMIT:
            raise DanglingReferenceError('HEAD', commit_ref)
        return parse_commit(obj)

    def commits(self, ascending: bool = True) -> list[LogEntry]:
        """Get every parseable commit in the store ordered by commit time.

        :param ascending: Oldest first if True, newest first otherwise.
        :return: The commits with their ids. Ties are ordered by id."""
        entries: list[LogEntry] = []
        for obj in self.objects.values():
            if obj.kind is not ObjectKind.COMMIT:
                continue
            try:
                entries.append(LogEntry(obj.name, parse_commit(obj)))
            except DecodeError as e:
                logger.warning('Skipping commit: %s', e)

        entries.sort(key=lambda entry: (entry.commit.commit_time, entry.commit_ref), reverse=not ascending)
        return entries

    def dangling_references(self) -> list[DanglingReferenceError]:
        """Report every reference whose target is not in the object map.

        Tree entries, commit trees and parents, branches and HEAD are checked.
        Malformed objects are not inspected.

        :return: One error per missing target, in no particular order."""
        state = self.state
        objects = state.objects
        dangling: list[DanglingReferenceError] = []

        for obj in objects.values():
            try:
                if obj.kind is ObjectKind.TREE:
                    targets = [entry.hash for entry in parse_tree(obj)]
                elif obj.kind is ObjectKind.COMMIT:
                    commit = parse_commit(obj)
                    targets = [commit.tree_id, *commit.parent_ids]
                else:
                    continue
            except DecodeError:
                continue
            dangling += [DanglingReferenceError(obj.name, target) for target in targets if target not in objects]

        dangling += [DanglingReferenceError(branch.name, branch.commit)
                     for branch in state.branches if branch.commit not in objects]

        if state.head is not None and head_target(state.head, state.branches, objects) not in objects:
            dangling.append(DanglingReferenceError('HEAD', state.head.value))

        return dangling

    def snapshot(self) -> GraphDocument:
        """Build the graph document of the generation loaded by the last refresh.

        The generation is taken once, so a concurrent refresh cannot mix objects and
        refs of different scans into one document.

        :return: The snapshot document.
        :raises RepositoryError: If the repository has not been opened."""
        state = self.state
        return build_snapshot(state.objects, state.head, list(state.branches), self.max_workers)


def open_repository(working_dir: Path | str, repo_dir: Path | str | None = None,
                    max_workers: int | None = None) -> Repository:
    """Create a Repository and scan it.

    :param working_dir: The directory holding the repository directory.
    :param repo_dir: The name of the repository directory. Defaults to '.git'.
    :param max_workers: The upper bound on worker threads.
    :return: The opened repository.
    :raises RepositoryNotFoundError: If the repository does not exist.
    :raises StoreUnavailableError: If the object store cannot be read."""
    return Repository(working_dir, repo_dir, max_workers).open()
