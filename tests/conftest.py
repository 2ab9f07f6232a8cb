import hashlib
import zlib
from pathlib import Path

from libdagit import Repository, TreeEntry, serialize_tree
from pytest import fixture

HEAD_CONTENT = 'ref: refs/heads/main\n'


class StoreBuilder:
    """Writes loose objects and refs into a `.git` directory the way git lays them out."""

    def __init__(self, repo_path: Path) -> None:
        self.repo_path = repo_path
        self.objects_dir = repo_path / 'objects'
        self.heads_dir = repo_path / 'refs' / 'heads'

    def raw(self, data: bytes, name: str | None = None) -> str:
        """Store already-framed object bytes, compressed, under their sha1 (or the given name)."""
        name = name or hashlib.sha1(data).hexdigest()
        path = self.objects_dir / name[:2] / name[2:]
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(zlib.compress(data))
        return name

    def object(self, type_name: str, content: bytes) -> str:
        return self.raw(f'{type_name} {len(content)}'.encode() + b'\x00' + content)

    def blob(self, text: str) -> str:
        return self.object('blob', text.encode())

    def tree(self, entries: list[tuple[str, str, str]]) -> str:
        return self.object('tree', serialize_tree([TreeEntry(mode, name, h) for mode, name, h in entries]))

    def commit(self, tree: str, parents: list[str] | None = None, message: str = 'commit message',
               time: int = 1_700_000_000) -> str:
        lines = [f'tree {tree}']
        lines += [f'parent {parent}' for parent in parents or []]
        lines += [f'author Alice Author <alice@example.com> {time} +0200',
                  f'committer Bob Committer <bob@example.com> {time} -0130']
        return self.object('commit', ('\n'.join(lines) + f'\n\n{message}\n').encode())

    def branch(self, name: str, commit: str) -> None:
        path = self.heads_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f'{commit}\n')

    def head(self, content: str) -> None:
        (self.repo_path / 'HEAD').write_text(content)


@fixture
def temp_repo_dir(tmp_path: Path) -> Path:
    return tmp_path


@fixture
def store(temp_repo_dir: Path) -> StoreBuilder:
    repo_path = temp_repo_dir / '.git'
    (repo_path / 'objects').mkdir(parents=True)
    (repo_path / 'refs' / 'heads').mkdir(parents=True)
    (repo_path / 'HEAD').write_text(HEAD_CONTENT)
    return StoreBuilder(repo_path)


@fixture
def temp_repo(temp_repo_dir: Path, store: StoreBuilder) -> Repository:
    return Repository(temp_repo_dir, max_workers=4)
