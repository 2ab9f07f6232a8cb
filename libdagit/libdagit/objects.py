"""Typed records for the objects found in a git object store."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ObjectKind(Enum):
    """The kind of a stored object, as named in its header."""

    BLOB = 'blob'
    TREE = 'tree'
    COMMIT = 'commit'
    OTHER = 'other'

    @classmethod
    def from_type_name(cls, type_name: str) -> 'ObjectKind':
        """Map a header type tag to a kind. Matching is case-sensitive.

        :param type_name: The type tag read from the object header.
        :return: The matching kind, or OTHER for anything unknown."""
        for kind in (cls.BLOB, cls.TREE, cls.COMMIT):
            if kind.value == type_name:
                return kind
        return cls.OTHER


@dataclass(frozen=True)
class GitObject:
    """A decoded object: header fields plus the raw content after the header.

    `name` is the content address. `size` is the declared size exactly as it
    appears in the header and is not trusted. `type_name` keeps the raw type tag
    so that objects of kind OTHER still report what they were."""

    kind: ObjectKind
    size: str
    location: str
    name: str
    content: bytes = field(repr=False)
    type_name: str = ''
    warnings: tuple[str, ...] = ()

    @property
    def type(self) -> str:
        """The type label used in graph documents."""
        return self.type_name or self.kind.value


@dataclass(frozen=True)
class TreeEntry:
    """One directory entry inside a tree object."""

    mode: str
    name: str
    hash: str


@dataclass(frozen=True)
class Person:
    """The identity part of an author or committer line."""

    name: str
    email: str


@dataclass
class Commit:
    """A parsed commit object."""

    tree_id: str
    parent_ids: list[str]
    author: Person
    committer: Person
    message: str
    commit_time: datetime
    author_time: datetime


@dataclass
class Blob:
    """A parsed blob. No binary detection is done at this level."""

    content: str
    size: int
