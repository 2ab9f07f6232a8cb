"""Parsers for the content of tree, commit and blob objects."""

import re
from dataclasses import asdict
from datetime import UTC, datetime, timedelta, timezone
from typing import Any

from .constants import HASH_CHARSET, RAW_HASH_SIZE
from .objects import Blob, Commit, GitObject, ObjectKind, Person, TreeEntry
from .plumbing import NUL, SPACE, MalformedCommitError, MalformedTreeError, find_byte

TREE_PREFIX = 'tree '
PARENT_PREFIX = 'parent '
AUTHOR_PREFIX = 'author '
COMMITTER_PREFIX = 'committer '
MIN_HEADER_LENGTH = min(len(p) for p in (PARENT_PREFIX, AUTHOR_PREFIX, COMMITTER_PREFIX))

_TZ_OFFSET = re.compile(r'([+-])(\d{2})(\d{2})')
_HEX_ID = re.compile(f'[{HASH_CHARSET}]+')

type ParsedContent = list[TreeEntry] | Commit | Blob | None


def parse_tree(obj: GitObject) -> list[TreeEntry]:
    """Parse the entries of a tree object, keeping their on-disk order.

    Each entry is `<mode> SP <name> NUL <20 raw hash bytes>`.

    :param obj: The tree object.
    :return: The tree entries.
    :raises MalformedTreeError: If the content ends in the middle of an entry."""
    content = obj.content
    entries: list[TreeEntry] = []
    start = 0

    while start < len(content):
        space_index = find_byte(SPACE, start, content)
        if space_index is None:
            msg = f'entry at offset {start} has no mode terminator'
            raise MalformedTreeError(obj.name, msg)

        nul_index = find_byte(NUL, space_index + 1, content)
        if nul_index is None:
            msg = f'entry at offset {start} has no name terminator'
            raise MalformedTreeError(obj.name, msg)

        hash_end = nul_index + 1 + RAW_HASH_SIZE
        if hash_end > len(content):
            msg = f'entry at offset {start} has a truncated hash'
            raise MalformedTreeError(obj.name, msg)

        try:
            mode = content[start:space_index].decode('ascii')
        except UnicodeDecodeError as e:
            msg = f'entry at offset {start} has a non-ASCII mode'
            raise MalformedTreeError(obj.name, msg) from e

        name = content[space_index + 1:nul_index].decode('utf-8', errors='surrogateescape')
        entries.append(TreeEntry(mode, name, content[nul_index + 1:hash_end].hex()))
        start = hash_end

    return entries


def serialize_tree(entries: list[TreeEntry]) -> bytes:
    """Encode tree entries in the on-disk tree format, in the order given.

    Names decoded from non-UTF-8 bytes are encoded back to the same bytes."""
    return b''.join(
        entry.mode.encode('ascii') + b' ' + entry.name.encode('utf-8', errors='surrogateescape') + b'\x00'
        + bytes.fromhex(entry.hash)
        for entry in entries)


def _parse_offset(offset: str) -> timezone:
    match = _TZ_OFFSET.fullmatch(offset)
    if not match:
        return UTC

    sign, hours, minutes = match.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    if delta >= timedelta(days=1):
        return UTC
    return timezone(-delta if sign == '-' else delta)


def _parse_signature(obj: GitObject, value: str) -> tuple[Person, datetime]:
    email_start = value.find('<')
    email_end = value.find('>', email_start + 1)
    if email_start == -1 or email_end == -1:
        msg = f'signature without a bracketed email: {value!r}'
        raise MalformedCommitError(obj.name, msg)

    fields = value[email_end + 1:].split()
    try:
        seconds = int(fields[0])
        when = datetime.fromtimestamp(seconds, _parse_offset(fields[1] if len(fields) > 1 else ''))
    except (IndexError, ValueError, OverflowError, OSError) as e:
        msg = f'signature without a valid timestamp: {value!r}'
        raise MalformedCommitError(obj.name, msg) from e

    return Person(value[:email_start].strip(), value[email_start + 1:email_end]), when


def parse_commit(obj: GitObject) -> Commit:
    """Parse a commit object.

    The first line names the tree, `parent` lines follow in order, then the author
    and committer signatures. The message is everything after the first blank line,
    minus one trailing newline. Header lines too short to hold a prefix are skipped,
    as are continuation lines and headers this parser does not know.

    :param obj: The commit object.
    :return: The parsed commit.
    :raises MalformedCommitError: If the tree line or a signature is missing or invalid."""
    text = obj.content.decode('utf-8', errors='replace')
    headers, separator, message = text.partition('\n\n')
    if not separator:
        headers = headers.removesuffix('\n')
    message = message.removesuffix('\n')

    lines = headers.split('\n')
    if not lines[0].startswith(TREE_PREFIX):
        msg = 'first line is not a tree line'
        raise MalformedCommitError(obj.name, msg)

    tree_id = lines[0][len(TREE_PREFIX):].strip()
    if not _HEX_ID.fullmatch(tree_id):
        msg = f'invalid tree id {tree_id!r}'
        raise MalformedCommitError(obj.name, msg)

    parent_ids: list[str] = []
    author: tuple[Person, datetime] | None = None
    committer: tuple[Person, datetime] | None = None

    for line in lines[1:]:
        if len(line) < MIN_HEADER_LENGTH:
            continue
        if line.startswith(PARENT_PREFIX):
            parent_ids.append(line[len(PARENT_PREFIX):].strip())
        elif line.startswith(AUTHOR_PREFIX):
            author = _parse_signature(obj, line[len(AUTHOR_PREFIX):])
        elif line.startswith(COMMITTER_PREFIX):
            committer = _parse_signature(obj, line[len(COMMITTER_PREFIX):])

    if author is None or committer is None:
        msg = 'missing author or committer line'
        raise MalformedCommitError(obj.name, msg)

    return Commit(tree_id, parent_ids, author[0], committer[0], message, committer[1], author[1])


def parse_blob(obj: GitObject) -> Blob:
    """Expose a blob's content as text along with its length in bytes."""
    return Blob(obj.content.decode('utf-8', errors='replace'), len(obj.content))


def parse_object(obj: GitObject) -> ParsedContent:
    """Parse an object according to its kind. Objects of kind OTHER are not parsed.

    :raises MalformedTreeError: If a tree is malformed.
    :raises MalformedCommitError: If a commit is malformed."""
    match obj.kind:
        case ObjectKind.TREE:
            return parse_tree(obj)
        case ObjectKind.COMMIT:
            return parse_commit(obj)
        case ObjectKind.BLOB:
            return parse_blob(obj)
        case _:
            return None


def content_payload(parsed: ParsedContent) -> dict[str, Any]:
    """Render parsed content as the JSON-ready `object` field of a graph node."""
    match parsed:
        case list():
            return {'entries': [asdict(entry) for entry in parsed]}
        case Commit():
            return {
                'tree': parsed.tree_id,
                'parents': list(parsed.parent_ids),
                'author': asdict(parsed.author),
                'committer': asdict(parsed.committer),
                'message': parsed.message,
                'commitTime': parsed.commit_time.isoformat(),
                'authorTime': parsed.author_time.isoformat(),
            }
        case Blob():
            return asdict(parsed)
        case _:
            return {}


def object_payload(obj: GitObject) -> dict[str, Any]:
    """Parse an object and render it as a JSON-ready payload.

    :raises MalformedTreeError: If a tree is malformed.
    :raises MalformedCommitError: If a commit is malformed."""
    return content_payload(parse_object(obj))
