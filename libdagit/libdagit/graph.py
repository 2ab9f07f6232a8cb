"""Assembling the object graph of a repository into a node/edge snapshot document."""

import json
import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Any, NamedTuple

from .constants import DEFAULT_MAX_WORKERS
from .objects import Commit, GitObject, ObjectKind
from .parsers import ParsedContent, content_payload, parse_object
from .plumbing import DecodeError
from .ref import Branch, Head, HeadMode, branch_name

logger = logging.getLogger(__name__)

HEAD_NODE = 'HEAD'
REF_TYPE = 'ref'


@dataclass(frozen=True)
class GraphEdge:
    """A directed edge between two node names."""

    src: str
    dest: str

    def to_dict(self) -> dict[str, str]:
        return {'src': self.src, 'dest': self.dest}


@dataclass
class GraphNode:
    """A node of the snapshot.

    `auxiliary` holds linkage computed while assembling the graph, such as the owning
    commit of a tree. It is flattened into the node on output."""

    name: str
    type: str
    payload: dict[str, Any]
    auxiliary: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {'name': self.name, 'type': self.type, 'object': self.payload, **self.auxiliary}


class Contribution(NamedTuple):
    """The nodes and edges one object adds to the graph."""

    nodes: list[GraphNode]
    edges: list[GraphEdge]


@dataclass
class GraphDocument:
    """The union of all contributions. Nodes are keyed by name, edges may repeat."""

    nodes: dict[str, GraphNode] = field(default_factory=dict)
    edges: list[GraphEdge] = field(default_factory=list)

    def add(self, contribution: Contribution) -> None:
        for node in contribution.nodes:
            self.nodes[node.name] = node
        self.edges.extend(contribution.edges)

    def node_names(self) -> set[str]:
        return set(self.nodes)

    def edge_pairs(self) -> Counter[tuple[str, str]]:
        """Return the edges as a multiset of (src, dest) pairs, for order-free comparison."""
        return Counter((edge.src, edge.dest) for edge in self.edges)

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {
            'nodes': [node.to_dict() for node in self.nodes.values()],
            'edges': [edge.to_dict() for edge in self.edges],
        }

    def to_json(self, indent: int | None = 4) -> str:
        return json.dumps(self.to_dict(), indent=indent)


class ParsedObject(NamedTuple):
    """An object together with its parsed content, or the reason it could not be parsed."""

    obj: GitObject
    content: ParsedContent
    error: str | None = None


@dataclass(frozen=True)
class Linkage:
    """Read-only cross-object facts shared by every contribution."""

    tree_owner: dict[str, str]
    blob_origin: dict[str, str]


def parse(obj: GitObject) -> ParsedObject:
    """Parse one object, turning a malformed one into a ParsedObject carrying the error."""
    try:
        return ParsedObject(obj, parse_object(obj))
    except DecodeError as e:
        logger.warning('%s', e)
        return ParsedObject(obj, None, e.reason)


def commits_in_time_order(parsed: Iterable[ParsedObject]) -> list[tuple[str, Commit]]:
    """Return (id, commit) pairs sorted by commit time, oldest first, ties broken by id."""
    commits = [(p.obj.name, p.content) for p in parsed if isinstance(p.content, Commit)]
    commits.sort(key=lambda item: (item[1].commit_time, item[0]))
    return commits


def link(parsed: Mapping[str, ParsedObject]) -> Linkage:
    """Compute the owning commit of every root tree and the first commit of every blob.

    Commits are scanned oldest first and the first match wins. A blob belongs to a
    commit when the commit's tree reaches it through any number of subtrees.

    :param parsed: Every parsed object of the repository, by id.
    :return: The linkage maps."""
    commits = commits_in_time_order(parsed.values())
    reachable: dict[str, frozenset[str]] = {}

    def _tree_blobs(tree_id: str, visiting: set[str]) -> frozenset[str]:
        if tree_id in reachable:
            return reachable[tree_id]
        target = parsed.get(tree_id)
        if target is None or not isinstance(target.content, list) or tree_id in visiting:
            return frozenset()

        visiting.add(tree_id)
        blobs: set[str] = set()
        for entry in target.content:
            child = parsed.get(entry.hash)
            if child is None:
                continue
            if child.obj.kind is ObjectKind.BLOB:
                blobs.add(entry.hash)
            elif child.obj.kind is ObjectKind.TREE:
                blobs |= _tree_blobs(entry.hash, visiting)
        visiting.discard(tree_id)

        reachable[tree_id] = frozenset(blobs)
        return reachable[tree_id]

    tree_owner: dict[str, str] = {}
    blob_origin: dict[str, str] = {}
    for commit_id, commit in commits:
        tree_owner.setdefault(commit.tree_id, commit_id)
        for blob_id in _tree_blobs(commit.tree_id, set()):
            blob_origin.setdefault(blob_id, commit_id)

    return Linkage(tree_owner, blob_origin)


def contribute(item: ParsedObject, linkage: Linkage, objects: Mapping[str, GitObject]) -> Contribution:
    """Compute the node and edges of one object.

    Only `item` and the read-only `linkage` and `objects` are read, so contributions
    can be computed in any order and in parallel.

    :param item: The parsed object.
    :param linkage: Owning commits of trees and first commits of blobs.
    :param objects: The full object map, used to spot missing targets.
    :return: The object's contribution."""
    obj, content = item.obj, item.content
    auxiliary: dict[str, Any] = {}
    edges: list[GraphEdge] = []

    match obj.kind:
        case ObjectKind.TREE:
            if isinstance(content, list):
                edges = [GraphEdge(obj.name, entry.hash) for entry in content]
            auxiliary['commit'] = linkage.tree_owner.get(obj.name, '')
        case ObjectKind.BLOB:
            auxiliary['firstCommitRef'] = linkage.blob_origin.get(obj.name, '')
        case ObjectKind.COMMIT:
            if isinstance(content, Commit):
                edges = [GraphEdge(obj.name, content.tree_id)]
                edges += [GraphEdge(obj.name, parent) for parent in content.parent_ids]

    warnings = [*obj.warnings, *([item.error] if item.error else [])]
    if warnings:
        auxiliary['warnings'] = warnings

    dangling = [edge.dest for edge in edges if edge.dest not in objects]
    if dangling:
        logger.warning('Object %s references missing objects: %s', obj.name, ', '.join(dangling))
        auxiliary['dangling'] = dangling

    return Contribution([GraphNode(obj.name, obj.type, content_payload(content), auxiliary)], edges)


def head_target(head: Head, branches: Iterable[Branch], objects: Mapping[str, GitObject]) -> str:
    """Return the node HEAD points at.

    A detached HEAD points at its commit id. A symbolic HEAD points at its branch's
    commit when that commit is in the store, otherwise at the branch name."""
    if head.mode is HeadMode.DETACHED:
        return head.value

    name = branch_name(head) or head.value
    for branch in branches:
        if branch.name == name and branch.commit in objects:
            return branch.commit
    return name


def ref_contribution(head: Head | None, branches: list[Branch], objects: Mapping[str, GitObject]) -> Contribution:
    """Compute the nodes and edges of HEAD and of every branch."""
    nodes: list[GraphNode] = []
    edges: list[GraphEdge] = []

    if head is not None:
        nodes.append(GraphNode(HEAD_NODE, REF_TYPE, head.to_dict()))
        edges.append(GraphEdge(HEAD_NODE, head_target(head, branches, objects)))

    for branch in branches:
        auxiliary = {} if branch.commit in objects else {'dangling': [branch.commit]}
        nodes.append(GraphNode(branch.name, REF_TYPE, branch.to_dict(), auxiliary))
        edges.append(GraphEdge(branch.name, branch.commit))

    return Contribution(nodes, edges)


def build_snapshot(
        objects: Mapping[str, GitObject],
        head: Head | None,
        branches: list[Branch],
        max_workers: int = DEFAULT_MAX_WORKERS,
) -> GraphDocument:
    """Build the graph document of a fully loaded object map.

    Objects are parsed and turned into contributions on a bounded thread pool. The
    map must not change while this runs.

    :param objects: The object map, by id.
    :param head: The HEAD pointer, or None when the repository has none.
    :param branches: The branch pointers.
    :param max_workers: The upper bound on worker threads.
    :return: The snapshot document."""
    document = GraphDocument()

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        parsed = {item.obj.name: item for item in executor.map(parse, objects.values())}
        linkage = link(parsed)
        for contribution in executor.map(partial(contribute, linkage=linkage, objects=objects), parsed.values()):
            document.add(contribution)

    document.add(ref_contribution(head, branches, objects))

    logger.debug('Snapshot has %d nodes and %d edges', len(document.nodes), len(document.edges))
    return document
