"""Shared fixtures for the rtsp_recorder test suite."""

import asyncio
import json
from pathlib import Path

import pytest

from rtsp_recorder.sources import SourceConfig


def camera_record(**overrides) -> dict:
    """One camera entry as it appears in the JSON source file."""
    record = {
        "name": "jardin",
        "user": "a",
        "password": "s3cret",
        "ip": "192.168.1.50",
        "port": 554,
        "stream": "stream2",
    }
    record.update(overrides)
    return record


def make_source(**overrides) -> SourceConfig:
    return SourceConfig.model_validate(camera_record(**overrides))


def write_script(path: Path, body: str) -> str:
    """Write an executable /bin/sh script and return its path."""
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return str(path)


async def settle(rounds: int = 10) -> None:
    """Let freshly created tasks run up to their first real wait."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 5.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


async def cancel_all(tasks) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


@pytest.fixture
def workdir(tmp_path, monkeypatch) -> Path:
    """Run the test from an empty working directory (output dirs land here)."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def sources_file(tmp_path):
    def _write(records) -> Path:
        path = tmp_path / "info.json"
        path.write_text(json.dumps(records))
        return path

    return _write


@pytest.fixture
def fake_ffmpeg(tmp_path):
    """Stand-in for ffmpeg: echoes its arguments, writes to stderr, exits 3."""
    return write_script(
        tmp_path / "fake-ffmpeg",
        'echo "args: $*"\n'
        'echo "warning on stderr" >&2\n'
        "exit 3\n",
    )
