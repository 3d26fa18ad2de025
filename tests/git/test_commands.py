import pytest

from repocache.git.commands import GitClient
from repocache.git.process import GitCommandError

from tests.helpers import commit_files, make_upstream


@pytest.fixture
def upstream(tmp_path):
    repo = make_upstream(tmp_path / "acme" / "widgets", {"README.md": "hello\n"})
    repo.git.branch("develop")
    return repo


@pytest.fixture
def upstream_url(upstream):
    return f"file://{upstream.working_tree_dir}"


@pytest.mark.integration
def test_clone_branch(tmp_path, upstream_url, upstream):
    git = GitClient(timeout=60)
    target = tmp_path / "clone"

    git.clone(upstream_url, target, depth=1, branch="develop")

    assert git.current_branch(target) == "develop"
    assert git.latest_commit(target) == upstream.head.commit.hexsha
    assert git.remote_url(target) == upstream_url


@pytest.mark.integration
def test_clone_missing_branch_fails(tmp_path, upstream_url):
    with pytest.raises(GitCommandError):
        GitClient(timeout=60).clone(upstream_url, tmp_path / "clone", 1, "nope")


@pytest.mark.integration
def test_remote_branches(upstream_url):
    git = GitClient(timeout=60)
    assert git.remote_default_branch(upstream_url) == "main"
    assert git.remote_branch_exists(upstream_url, "develop")
    assert not git.remote_branch_exists(upstream_url, "nope")


@pytest.mark.integration
def test_fetch_pull_and_changed_files(tmp_path, upstream_url, upstream):
    git = GitClient(timeout=60)
    target = tmp_path / "clone"
    git.clone(upstream_url, target, depth=1, branch="main")
    before = git.latest_commit(target)

    after = commit_files(upstream, {"a.py": "x = 1\n", "b.py": "y = 2\n"}, "Add files")
    git.fetch(target)
    git.pull(target, "origin", "main")

    assert git.latest_commit(target) == after
    assert git.changed_files(target, before, after) == 2
    assert git.changed_files(target, after, after) == 0


@pytest.mark.integration
def test_clean_keeps_patterns(tmp_path, upstream_url):
    git = GitClient(timeout=60)
    target = tmp_path / "clone"
    git.clone(upstream_url, target, depth=1)
    (target / "scratch.txt").write_text("junk")
    (target / "keep.json").write_text("{}")

    git.clean(target, keep=["keep.json"])

    assert not (target / "scratch.txt").exists()
    assert (target / "keep.json").exists()
    assert (target / "README.md").exists()


@pytest.mark.short
def test_current_branch_outside_repository(tmp_path):
    with pytest.raises(GitCommandError):
        GitClient().current_branch(tmp_path)
