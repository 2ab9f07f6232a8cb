import threading
from pathlib import Path
from shutil import rmtree

from conftest import StoreBuilder
from libdagit import ref
from libdagit.constants import HASH_LENGTH
from libdagit.graph import HEAD_NODE, GraphDocument
from libdagit.objects import ObjectKind
from libdagit.plumbing import StoreUnavailableError
from libdagit.ref import RefError
from libdagit.repository import (DanglingReferenceError, ObjectNotFoundError, Repository, RepositoryError,
                                 RepositoryNotFoundError, open_repository)
from pytest import MonkeyPatch, raises


def _create_sample_history(store: StoreBuilder) -> tuple[str, str, str, str]:
    blob = store.blob('hello')
    tree = store.tree([('100644', 'hello.txt', blob)])
    first = store.commit(tree, message='First commit', time=1_700_000_000)
    second = store.commit(tree, [first], message='Second commit', time=1_700_000_500)
    return blob, tree, first, second


def test_init_with_custom_repo_dir(temp_repo_dir: Path) -> None:
    custom_repo_dir = '.custom_git'
    repo = Repository(temp_repo_dir, custom_repo_dir)

    assert str(repo.repo_dir) == custom_repo_dir
    assert not repo.exists()

    (temp_repo_dir / custom_repo_dir / 'objects').mkdir(parents=True)
    assert repo.exists()
    assert repo.open().objects == {}


def test_bare_repository(temp_repo_dir: Path) -> None:
    builder = StoreBuilder(temp_repo_dir)
    builder.objects_dir.mkdir()
    blob = builder.blob('bare')

    repo = open_repository(temp_repo_dir, '.')

    assert repo.lookup(blob).content == b'bare'


def test_open_missing_repository_raises_error(temp_repo_dir: Path) -> None:
    with raises(RepositoryNotFoundError):
        Repository(temp_repo_dir).open()


def test_objects_before_open_raises_error(temp_repo: Repository) -> None:
    with raises(RepositoryError):
        temp_repo.objects


def test_open_loads_every_loose_object(temp_repo: Repository, store: StoreBuilder) -> None:
    blob, tree, first, second = _create_sample_history(store)

    temp_repo.open()

    assert set(temp_repo.objects) == {blob, tree, first, second}
    assert all(len(name) == HASH_LENGTH for name in temp_repo.objects)
    assert temp_repo.lookup(blob).kind == ObjectKind.BLOB
    assert temp_repo.lookup(tree).kind == ObjectKind.TREE
    assert temp_repo.lookup(second).kind == ObjectKind.COMMIT


def test_lookup_missing_object_raises_error(temp_repo: Repository) -> None:
    temp_repo.open()

    assert temp_repo.get('0' * 40) is None
    with raises(ObjectNotFoundError) as exc_info:
        temp_repo.lookup('0' * 40)

    assert exc_info.value.name == '0' * 40


def test_open_skips_unreadable_objects(temp_repo: Repository, store: StoreBuilder) -> None:
    blob = store.blob('fine')
    bad = 'ee' * 20
    (store.objects_dir / 'ee').mkdir()
    (store.objects_dir / 'ee' / bad[2:]).write_bytes(b'not zlib at all')

    temp_repo.open()

    assert set(temp_repo.objects) == {blob}


def test_open_keeps_objects_with_bad_header(temp_repo: Repository, store: StoreBuilder) -> None:
    name = store.raw(b'no header here')

    temp_repo.open()

    obj = temp_repo.lookup(name)
    assert obj.kind == ObjectKind.OTHER
    assert obj.content == b'no header here'
    assert obj.warnings


def test_refresh_replaces_object_map(temp_repo: Repository, store: StoreBuilder) -> None:
    first = store.blob('first')
    previous = temp_repo.open().objects

    second = store.blob('second')
    temp_repo.refresh()

    assert set(previous) == {first}
    assert set(temp_repo.objects) == {first, second}


def test_refresh_keeps_previous_state_when_store_disappears(temp_repo: Repository, store: StoreBuilder) -> None:
    blob = store.blob('kept')
    temp_repo.open()
    checksum = temp_repo.checksum

    rmtree(store.objects_dir)

    with raises(StoreUnavailableError):
        temp_repo.refresh()

    assert set(temp_repo.objects) == {blob}
    assert temp_repo.checksum == checksum


def test_commits_are_ordered_by_commit_time(temp_repo: Repository, store: StoreBuilder) -> None:
    _, _, first, second = _create_sample_history(store)
    temp_repo.open()

    assert [entry.commit_ref for entry in temp_repo.commits()] == [first, second]
    assert [entry.commit_ref for entry in temp_repo.commits(ascending=False)] == [second, first]
    assert temp_repo.commits()[1].commit.parent_ids == [first]


def test_commits_skip_malformed_commits(temp_repo: Repository, store: StoreBuilder) -> None:
    _, _, first, second = _create_sample_history(store)
    store.object('commit', b'not a commit\n')
    temp_repo.open()

    assert [entry.commit_ref for entry in temp_repo.commits()] == [first, second]


def test_head_and_branches(temp_repo: Repository, store: StoreBuilder) -> None:
    _, _, first, second = _create_sample_history(store)
    store.branch('main', second)
    store.branch('feature/old', first)

    assert temp_repo.head().value == 'refs/heads/main'
    assert [branch.name for branch in temp_repo.branches()] == ['main', 'old']
    assert temp_repo.branch_exists('feature/old')
    assert not temp_repo.branch_exists('nope')


def test_head_missing_raises_error(temp_repo: Repository, store: StoreBuilder) -> None:
    (store.repo_path / 'HEAD').unlink()

    with raises(RepositoryError):
        temp_repo.head()


def test_current_commit_through_branch(temp_repo: Repository, store: StoreBuilder) -> None:
    _, tree, _, second = _create_sample_history(store)
    store.branch('main', second)
    temp_repo.open()

    assert temp_repo.current_branch().commit == second

    commit = temp_repo.current_commit()
    assert commit.tree_id == tree
    assert commit.message == 'Second commit'


def test_current_commit_detached(temp_repo: Repository, store: StoreBuilder) -> None:
    _, _, first, _ = _create_sample_history(store)
    store.head(f'{first}\n')
    temp_repo.open()

    assert temp_repo.current_branch() is None
    assert temp_repo.current_commit().message == 'First commit'


def test_current_branch_missing_raises_error(temp_repo: Repository, store: StoreBuilder) -> None:
    temp_repo.open()

    with raises(DanglingReferenceError) as exc_info:
        temp_repo.current_branch()

    assert exc_info.value.source == 'HEAD'
    assert exc_info.value.target == 'refs/heads/main'


def test_current_commit_not_in_store_raises_error(temp_repo: Repository, store: StoreBuilder) -> None:
    store.branch('main', '9' * 40)
    temp_repo.open()

    with raises(DanglingReferenceError):
        temp_repo.current_commit()


def test_dangling_references(temp_repo: Repository, store: StoreBuilder) -> None:
    missing_blob, missing_tree, missing_parent = '1' * 40, '2' * 40, '3' * 40
    tree = store.tree([('100644', 'gone.txt', missing_blob)])
    orphan = store.commit(missing_tree, [missing_parent])
    store.branch('main', orphan)
    store.branch('stale', '4' * 40)
    temp_repo.open()

    dangling = {(error.source, error.target) for error in temp_repo.dangling_references()}

    assert dangling == {
        (tree, missing_blob),
        (orphan, missing_tree),
        (orphan, missing_parent),
        ('stale', '4' * 40),
    }


def test_dangling_head(temp_repo: Repository, store: StoreBuilder) -> None:
    store.head(f'{"5" * 40}\n')
    temp_repo.open()

    assert [(error.source, error.target) for error in temp_repo.dangling_references()] == [('HEAD', '5' * 40)]


def test_no_dangling_references_in_complete_store(temp_repo: Repository, store: StoreBuilder) -> None:
    _, _, _, second = _create_sample_history(store)
    store.branch('main', second)
    temp_repo.open()

    assert temp_repo.dangling_references() == []


def _assert_whole_generation(document: GraphDocument) -> None:
    for edge in document.edges:
        source = document.nodes[edge.src]
        assert edge.dest in document.nodes or edge.dest in source.auxiliary.get('dangling', [])


def test_snapshot_uses_refs_read_with_the_object_map(temp_repo: Repository, store: StoreBuilder) -> None:
    _, tree, first, _ = _create_sample_history(store)
    store.branch('main', first)
    temp_repo.open()

    third = store.commit(tree, [first], message='Third commit', time=1_700_001_000)
    store.branch('main', third)
    document = temp_repo.snapshot()

    assert document.nodes['main'].payload == {'name': 'main', 'commit': first}
    assert 'dangling' not in document.nodes['main'].auxiliary
    assert (HEAD_NODE, first) in document.edge_pairs()
    assert third not in document.nodes
    assert temp_repo.current_commit().message == 'First commit'

    temp_repo.refresh()

    assert (HEAD_NODE, third) in temp_repo.snapshot().edge_pairs()
    assert temp_repo.current_commit().message == 'Third commit'


def test_snapshots_during_refresh_are_whole_generations(temp_repo: Repository, store: StoreBuilder) -> None:
    tip = store.commit(store.tree([]), time=1_700_000_000)
    store.branch('main', tip)
    temp_repo.open()
    errors: list[Exception] = []

    def _advance_main() -> None:
        nonlocal tip
        try:
            for step in range(1, 20):
                blob = store.blob(f'content {step}')
                tip = store.commit(store.tree([('100644', 'file.txt', blob)]), [tip], time=1_700_000_000 + step)
                store.branch('main', tip)
                temp_repo.refresh()
        except Exception as e:
            errors.append(e)

    writer = threading.Thread(target=_advance_main)
    writer.start()
    documents = []
    while writer.is_alive():
        documents.append(temp_repo.snapshot())
    writer.join()
    documents.append(temp_repo.snapshot())

    assert not errors
    for document in documents:
        _assert_whole_generation(document)
        main = document.nodes['main']
        assert 'dangling' not in main.auxiliary
        assert (HEAD_NODE, main.payload['commit']) in document.edge_pairs()
    assert documents[-1].nodes['main'].payload['commit'] == tip


def test_snapshot_skips_unreadable_branch(temp_repo: Repository, store: StoreBuilder,
                                          monkeypatch: MonkeyPatch) -> None:
    _, _, first, second = _create_sample_history(store)
    store.branch('main', second)
    store.branch('broken', first)
    read_text = ref._read_text

    def _read_text_failing_on_broken(path: Path) -> str:
        if path.name == 'broken':
            msg = f'Cannot read reference file {path}'
            raise RefError(msg)
        return read_text(path)

    monkeypatch.setattr(ref, '_read_text', _read_text_failing_on_broken)
    document = temp_repo.open().snapshot()

    assert 'broken' not in document.nodes
    assert (HEAD_NODE, second) in document.edge_pairs()
    _assert_whole_generation(document)


def test_current_branch_without_head_raises_error(temp_repo: Repository, store: StoreBuilder) -> None:
    (store.repo_path / 'HEAD').unlink()
    temp_repo.open()

    with raises(RepositoryError):
        temp_repo.current_branch()
