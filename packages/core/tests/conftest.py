"""Shared fixtures for the core test suite."""

import shutil
import subprocess

import pytest

from difflens_core.config import DEFAULT_CONFIG


def _git(repo, *args):
    """Run git in repo with a fixed identity so commits work on any machine."""
    return subprocess.run(
        ["git", "-c", "user.email=dev@example.com", "-c", "user.name=Dev", "-c", "commit.gpgsign=false", *args],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    )


@pytest.fixture
def run_git():
    if shutil.which("git") is None:
        pytest.skip("git executable not available")
    return _git


@pytest.fixture
def git_repo(tmp_path, run_git):
    """An initialised repository with one committed file, src/lib.py."""
    repo = tmp_path / "repo"
    repo.mkdir()
    run_git(repo, "init", "-q")
    (repo / "src").mkdir()
    (repo / "src" / "lib.py").write_text("def add(a, b):\n    return a + b\n")
    run_git(repo, "add", ".")
    run_git(repo, "commit", "-q", "-m", "initial")
    return repo


@pytest.fixture
def config():
    return {**DEFAULT_CONFIG, "exclude": []}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the developer's own Ollama settings out of the tests."""
    for name in ("OLLAMA_URL", "OLLAMA_HOST", "DIFFLENS_MODEL", "DEBUG", "DIFFLENS_CONFIG"):
        monkeypatch.delenv(name, raising=False)
