"""Shared fixtures: throwaway git remotes and a mirror service pointed at them."""
from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from gitmirror.domain.models import MirrorSettings, RepositorySource
from gitmirror.services.git import GitClient
from gitmirror.services.mirroring import MirrorService


def run_git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


class RemoteRepo:
    """A plain (non-bare) repository standing in for a remote."""

    def __init__(self, path: Path):
        self.path = path

    def write(self, relative: str, content: str) -> None:
        target = self.path / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    def write_manifest(self, manifest: Dict) -> None:
        self.write("package.json", json.dumps(manifest, indent=2))

    def commit_all(self, message: str) -> str:
        run_git(self.path, "add", "-A")
        run_git(self.path, "commit", "-q", "-m", message)
        return self.head()

    def head(self) -> str:
        return run_git(self.path, "rev-parse", "HEAD")

    @property
    def url(self) -> str:
        return str(self.path)


@pytest.fixture(autouse=True)
def git_identity(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Mirror Tests")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "tests@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Mirror Tests")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "tests@example.com")
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")


@pytest.fixture
def make_remote(tmp_path: Path):
    """Factory creating a remote with one commit containing package.json."""

    def _make(name: str, dependencies: Optional[Dict[str, str]] = None, version: str = "1.0.0") -> RemoteRepo:
        path = tmp_path / "remotes" / name
        path.mkdir(parents=True)
        run_git(path, "init", "-q")
        run_git(path, "symbolic-ref", "HEAD", "refs/heads/main")
        repo = RemoteRepo(path)
        manifest = {"name": name, "version": version, "description": f"{name} fixture"}
        if dependencies is not None:
            manifest["dependencies"] = dependencies
        repo.write_manifest(manifest)
        repo.write("index.js", "module.exports = 42;\n")
        repo.write("lib/util.js", "exports.util = true;\n")
        repo.commit_all("Initial commit")
        return repo

    return _make


class RecordingGitClient(GitClient):
    """GitClient that records the git subcommand of every invocation."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls: List[str] = []

    async def _run(self, args: List[str], cwd: Path) -> str:
        self.calls.append(args[0])
        return await super()._run(args, cwd)

    def count(self, subcommand: str) -> int:
        return self.calls.count(subcommand)

    def reset(self) -> None:
        self.calls.clear()


@pytest.fixture
def git_client() -> RecordingGitClient:
    return RecordingGitClient(timeout=60)


@pytest.fixture
def settings(tmp_path: Path) -> MirrorSettings:
    return MirrorSettings(
        cache_root=str(tmp_path / "cache"),
        registry_url="http://registry.example.com",
    )


@pytest.fixture
def make_service(settings: MirrorSettings, git_client: RecordingGitClient):
    """Factory building a MirrorService over the given sources."""

    def _make(*sources: RepositorySource, **kwargs) -> MirrorService:
        table = {source.name: source for source in sources}
        return MirrorService(table, kwargs.pop("settings", settings), git=kwargs.pop("git", git_client), **kwargs)

    return _make
