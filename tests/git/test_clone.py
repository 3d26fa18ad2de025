import threading
from datetime import timedelta

import pytest

from repocache.exceptions import CloneFailedError, NotFoundError, UpdateFailedError
from repocache.git.clone import CloneEngine
from repocache.git.commands import GitClient
from repocache.git.metadata import (
    METADATA_FILE_NAME,
    read_metadata,
    utcnow,
    write_metadata,
)
from repocache.git.paths import branch_hash, resolve_path

from tests.helpers import FakeGitClient, commit_files, make_upstream

URL = "https://github.com/acme/widgets"


@pytest.fixture
def engine(storage_root, fake_git, locks):
    return CloneEngine(storage_root, fake_git, locks)


class TestClone:
    @pytest.mark.short
    def test_clone_requested_branch(self, engine, fake_git, storage_root):
        info = engine.clone(URL, "main")

        assert info.exists
        assert info.branch == "main"
        expected = storage_root / f"acme_widgets_main_{branch_hash('main')}"
        assert info.local_path == expected
        metadata = read_metadata(info.local_path)
        assert metadata.url == URL
        assert metadata.branch == "main"
        assert metadata.commit_hash == fake_git.head
        assert metadata.clone_method == "https"
        assert fake_git.count("clone") == 1
        assert fake_git.calls[0][3:] == (1, "main")

    @pytest.mark.short
    def test_existing_entry_is_not_recloned(self, engine, fake_git):
        first = engine.clone(URL, "main")
        second = engine.clone(URL, "main")

        assert first.local_path == second.local_path
        assert fake_git.count("clone") == 1

    @pytest.mark.short
    def test_force_reclones(self, engine, fake_git):
        info = engine.clone(URL, "main")
        (info.local_path / "stray.txt").write_text("x")

        engine.clone(URL, "main", force=True)

        assert fake_git.count("clone") == 2
        assert not (info.local_path / "stray.txt").exists()

    @pytest.mark.short
    def test_custom_depth(self, engine, fake_git):
        engine.clone(URL, "main", depth=5)
        assert fake_git.calls[0][3] == 5

    @pytest.mark.short
    def test_leftover_directory_is_replaced(self, engine, storage_root):
        leftover = resolve_path(storage_root, URL, "main")
        leftover.mkdir()
        (leftover / "partial").write_text("interrupted clone")

        info = engine.clone(URL, "main")

        assert info.exists
        assert not (leftover / "partial").exists()

    @pytest.mark.short
    def test_fallback_to_default_branch(self, engine, fake_git, storage_root):
        info = engine.clone(URL, "nope")

        assert info.branch == "main"
        assert info.local_path == resolve_path(storage_root, URL, "main")
        assert not resolve_path(storage_root, URL, "nope").exists()
        assert read_metadata(info.local_path).branch == "main"

    @pytest.mark.short
    def test_fallback_probes_common_branches(self, storage_root, locks):
        git = FakeGitClient(branches=["develop"], default_branch=None)
        engine = CloneEngine(storage_root, git, locks)

        info = engine.clone(URL, "nope")

        assert info.branch == "develop"
        probed = [c[2] for c in git.calls if c[0] == "remote_branch_exists"]
        assert probed == ["main", "master", "develop"]

    @pytest.mark.short
    def test_fallback_without_branch(self, storage_root, locks):
        git = FakeGitClient(branches=[], default_branch=None)
        engine = CloneEngine(storage_root, git, locks)

        info = engine.clone(URL, "nope")

        # Unqualified clone lands at the requested path, with a detached HEAD
        assert info.local_path == resolve_path(storage_root, URL, "nope")
        assert info.branch == "master"
        assert git.calls[-1][0] == "clone"
        assert git.calls[-1][4] is None

    @pytest.mark.short
    def test_fallback_reuses_cached_default_branch(self, engine, fake_git):
        engine.clone(URL, "main")
        info = engine.clone(URL, "nope")

        assert info.branch == "main"
        assert fake_git.count("clone") == 2  # main, then the failed nope

    @pytest.mark.short
    def test_clone_failure(self, storage_root, locks):
        class NoCloneGit(FakeGitClient):
            def clone(self, url, path, depth, branch=None):
                super().clone(url, path, depth, "missing-branch")

        engine = CloneEngine(storage_root, NoCloneGit(branches=["main"]), locks)

        with pytest.raises(CloneFailedError) as exc_info:
            engine.clone(URL, "main")

        assert exc_info.value.code == "CLONE_FAILED"
        assert not resolve_path(storage_root, URL, "main").exists()

    @pytest.mark.short
    def test_concurrent_clones_clone_once(self, storage_root, locks):
        git = FakeGitClient(clone_delay=0.2)
        engine = CloneEngine(storage_root, git, locks)
        results = []
        errors = []

        def worker():
            try:
                results.append(engine.clone(URL, "main"))
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert git.count("clone") == 1
        assert len({r.local_path for r in results}) == 1


class TestUpdate:
    @pytest.mark.short
    def test_missing_entry(self, engine, storage_root):
        with pytest.raises(NotFoundError):
            engine.update(storage_root / "nothing_here")

    @pytest.mark.short
    def test_fresh_entry_is_skipped(self, engine, fake_git):
        info = engine.clone(URL, "main")

        result = engine.update(info.local_path)

        assert not result.updated
        assert fake_git.count("fetch") == 0

    @pytest.mark.short
    def test_stale_entry_is_updated(self, engine, fake_git):
        info = engine.clone(URL, "main")
        previous = fake_git.head
        later = utcnow() + timedelta(hours=25)
        fake_git.head = "b" * 40
        fake_git.changes = 3

        result = engine.update(info.local_path, now=later)

        assert result.updated
        assert result.previous_hash == previous
        assert result.current_hash == "b" * 40
        assert result.changes == 3
        metadata = read_metadata(info.local_path)
        assert metadata.commit_hash == "b" * 40
        assert metadata.last_updated == later
        assert ("clean", str(info.local_path), [METADATA_FILE_NAME]) in fake_git.calls
        assert ("pull", str(info.local_path), "origin", "main") in fake_git.calls

    @pytest.mark.short
    def test_force(self, engine, fake_git):
        info = engine.clone(URL, "main")

        result = engine.update(info.local_path, force=True)

        assert not result.updated
        assert fake_git.count("fetch") == 1

    @pytest.mark.short
    def test_fetch_failure(self, engine, fake_git):
        info = engine.clone(URL, "main")
        before = read_metadata(info.local_path)
        fake_git.fail_fetch = True

        with pytest.raises(UpdateFailedError):
            engine.update(info.local_path, force=True)

        assert read_metadata(info.local_path) == before

    @pytest.mark.short
    def test_missing_metadata(self, engine):
        info = engine.clone(URL, "main")
        (info.local_path / METADATA_FILE_NAME).unlink()

        with pytest.raises(UpdateFailedError):
            engine.update(info.local_path, force=True)


@pytest.mark.integration
class TestWithRealGit:
    @pytest.fixture
    def upstream(self, tmp_path):
        path = tmp_path / "remote" / "acme" / "widgets"
        return make_upstream(path, {"README.md": "v1\n"})

    @pytest.fixture
    def url(self, upstream):
        return f"file://{upstream.working_tree_dir}"

    @pytest.fixture
    def real_engine(self, storage_root, locks):
        return CloneEngine(storage_root, GitClient(timeout=60), locks)

    def test_clone_fallback_and_update(self, real_engine, upstream, url, storage_root):
        info = real_engine.clone(url, "nope")

        assert info.branch == "main"
        assert info.local_path.name == f"acme_widgets_main_{branch_hash('main')}"
        assert (info.local_path / "README.md").read_text() == "v1\n"
        assert info.metadata.commit_hash == upstream.head.commit.hexsha

        new_head = commit_files(
            upstream, {"README.md": "v2\n", "src/app.py": "pass\n"}, "v2"
        )
        # Untracked files are removed, the sidecar is kept
        (info.local_path / "scratch.txt").write_text("junk")
        metadata = read_metadata(info.local_path)
        metadata.last_updated = metadata.last_updated - timedelta(days=2)
        write_metadata(info.local_path, metadata)

        result = real_engine.update(info.local_path)

        assert result.updated
        assert result.current_hash == new_head
        assert result.changes == 2
        assert (info.local_path / "README.md").read_text() == "v2\n"
        assert not (info.local_path / "scratch.txt").exists()
        assert read_metadata(info.local_path).commit_hash == new_head
