"""Pytest configuration and fixtures."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from aictx.models import AIResponse, ChatRole

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def git(repo: Path, *args: str) -> str:
    """Run git in ``repo`` and return stdout (fails the test on error)."""
    proc = subprocess.run(
        ["git", *args],
        cwd=str(repo),
        capture_output=True,
        text=True,
        check=True,
    )
    return proc.stdout


def init_repo(path: Path, user_name: str = "Test User") -> Path:
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q")
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    git(path, "config", "user.name", user_name)
    git(path, "config", "user.email", "test@example.com")
    git(path, "config", "commit.gpgsign", "false")
    return path


def commit_all(repo: Path, message: str = "initial") -> str:
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", message)
    return git(repo, "rev-parse", "HEAD").strip()


@pytest.fixture
def empty_repo(tmp_path: Path) -> Path:
    """A git repository without commits."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    return init_repo(tmp_path / "repo")


@pytest.fixture
def repo(empty_repo: Path) -> Path:
    """A git repository on ``main`` with one commit containing src/x.ts."""
    src = empty_repo / "src"
    src.mkdir()
    (src / "x.ts").write_text("".join(f"line {i}\n" for i in range(1, 11)), encoding="utf-8")
    (empty_repo / "README.md").write_text("# demo\n", encoding="utf-8")
    commit_all(empty_repo)
    return empty_repo


class FakeChatSource:
    """In-memory ChatSource."""

    def __init__(self, messages: list[AIResponse] | None = None):
        self.all_messages: list[AIResponse] = list(messages or [])
        self.latest_calls = 0
        self.fail_latest: Exception | None = None
        self.available = True

    def add(self, message: AIResponse) -> None:
        self.all_messages.append(message)

    def ensure_available(self) -> None:
        if not self.available:
            from aictx.errors import SourceUnavailable

            raise SourceUnavailable("fake source offline")

    def latest_assistant_message(self) -> AIResponse | None:
        self.latest_calls += 1
        if self.fail_latest is not None:
            raise self.fail_latest
        latest = None
        for m in self.all_messages:
            if m.is_assistant and (latest is None or m.timestamp > latest.timestamp):
                latest = m
        return latest

    def messages(self, conversation_id: str) -> list[AIResponse]:
        return sorted(
            (m for m in self.all_messages if m.conversation_id == conversation_id),
            key=lambda m: m.timestamp,
        )

    def watch_path(self) -> Path | None:
        return None


def user_msg(id: str, conversation_id: str, timestamp: float, text: str) -> AIResponse:
    return AIResponse(id=id, conversation_id=conversation_id, timestamp=timestamp, role=ChatRole.USER, text=text)


def assistant_msg(id: str, conversation_id: str, timestamp: float, text: str = "done") -> AIResponse:
    return AIResponse(id=id, conversation_id=conversation_id, timestamp=timestamp, role=ChatRole.ASSISTANT, text=text)


@pytest.fixture
def fake_source() -> FakeChatSource:
    return FakeChatSource()
