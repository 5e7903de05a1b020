"""Shared fixtures: a fake ``claude`` executable for real-subprocess tests."""

from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest

_FAKE_CLAUDE = """\
import json
import sys

prompt = sys.stdin.read()
if prompt.startswith("fail"):
    sys.stderr.write("boom\\n")
    sys.exit(3)
if prompt.startswith("sleep"):
    import time
    time.sleep(float(prompt.split()[1]))
if prompt.startswith("json"):
    print(json.dumps({"type": "result", "result": 'Here you go: {"a": 1} done'}))
else:
    print(json.dumps({"type": "result", "result": "echo:" + prompt, "argv": sys.argv[1:]}))
"""


def write_fake_claude(directory: Path) -> Path:
    """Write an executable stand-in for the Claude CLI into *directory*.

    The prompt on stdin selects the behaviour: ``fail…`` exits 3 with
    stderr, ``sleep N`` sleeps first, ``json…`` answers with JSON embedded
    in prose, anything else is echoed back as ``{"result": "echo:<prompt>"}``.
    """
    path = directory / "claude"
    path.write_text(f"#!{sys.executable}\n{_FAKE_CLAUDE}", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_claude(tmp_path: Path) -> Path:
    return write_fake_claude(tmp_path)
