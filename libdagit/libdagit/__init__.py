"""libdagit: read a git object store and present it as a graph."""

from .graph import GraphDocument, GraphEdge, GraphNode, build_snapshot
from .objects import Blob, Commit, GitObject, ObjectKind, Person, TreeEntry
from .parsers import object_payload, parse_blob, parse_commit, parse_tree, serialize_tree
from .plumbing import (DecodeError, MalformedCommitError, MalformedTreeError, ObjectError, ObjectReadError,
                       StoreUnavailableError, decode_object, find_byte, list_objects, load_loose_object)
from .ref import Branch, Head, HeadMode, RefError, list_branches, read_head
from .repository import (DanglingReferenceError, LogEntry, ObjectNotFoundError, Repository, RepositoryError,
                         RepositoryNotFoundError, StoreState, open_repository)

__all__ = [
    'Blob',
    'Branch',
    'Commit',
    'DanglingReferenceError',
    'DecodeError',
    'GitObject',
    'GraphDocument',
    'GraphEdge',
    'GraphNode',
    'Head',
    'HeadMode',
    'LogEntry',
    'MalformedCommitError',
    'MalformedTreeError',
    'ObjectError',
    'ObjectKind',
    'ObjectNotFoundError',
    'ObjectReadError',
    'Person',
    'RefError',
    'Repository',
    'RepositoryError',
    'RepositoryNotFoundError',
    'StoreState',
    'StoreUnavailableError',
    'TreeEntry',
    'build_snapshot',
    'decode_object',
    'find_byte',
    'list_branches',
    'list_objects',
    'load_loose_object',
    'object_payload',
    'open_repository',
    'parse_blob',
    'parse_commit',
    'parse_tree',
    'read_head',
    'serialize_tree',
]
