"""Layout and sizing constants for reading a git object store."""

import os

DEFAULT_REPO_DIR = '.git'
OBJECTS_SUBDIR = 'objects'
REFS_DIR = 'refs'
HEADS_DIR = 'heads'
HEAD_FILE = 'HEAD'

SYMBOLIC_REF_PREFIX = 'ref:'

HASH_LENGTH = 40
HASH_CHARSET = '0123456789abcdefABCDEF'
RAW_HASH_SIZE = 20

PACK_EXTENSION = '.pack'
# Immutable pack-side files, fingerprinted by metadata rather than content
PACK_ARCHIVE_EXTENSIONS = frozenset({'.pack', '.idx', '.rev', '.bitmap', '.keep', '.promisor'})

DEFAULT_MAX_WORKERS = os.cpu_count() or 1
