"""Shared fixtures for berth tests."""

import shutil
import subprocess
import sys
import textwrap

import pytest

from berth.config import Config
from berth.models import Bead


def bead(bead_id, *deps, **kwargs):
    return Bead(id=bead_id, title=kwargs.pop("title", f"Title {bead_id}"), depends_on=list(deps), **kwargs)


@pytest.fixture
def make_bead():
    return bead


@pytest.fixture
def config():
    cfg = Config()
    cfg.execution.max_parallel = 4
    cfg.execution.event_buffer = 8
    return cfg


@pytest.fixture
def git_repo(tmp_path):
    """A fresh git repository with one initial commit."""
    if shutil.which("git") is None:
        pytest.skip("git binary not found on PATH")

    repo = tmp_path / "repo"
    repo.mkdir()

    def git(*args):
        subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True)

    git("init", "-q")
    git("config", "user.email", "berth@example.com")
    git("config", "user.name", "Berth Test")
    git("config", "commit.gpgsign", "false")
    (repo / "README.md").write_text("test repo\n")
    git("add", "-A")
    git("commit", "-q", "-m", "initial")
    return repo


@pytest.fixture
def git_log():
    """Return a reader for full commit messages, newest first."""

    def _read(repo) -> list[str]:
        out = subprocess.run(
            ["git", "log", "--format=%B%x00"],
            cwd=repo, check=True, capture_output=True, text=True,
        ).stdout
        return [m.strip() for m in out.split("\x00") if m.strip()]

    return _read


@pytest.fixture
def agent_script(tmp_path):
    """Write a fake agent program and return a config that launches it."""

    def _write(body: str, cfg: Config | None = None) -> Config:
        script = tmp_path / "fake_agent.py"
        script.write_text(textwrap.dedent(body))
        cfg = cfg or Config()
        cfg.execution.claude_command = [sys.executable, str(script)]
        return cfg

    return _write


# Writes <bead-id>.txt into its working directory, or fails for ids containing "bad".
WRITER_AGENT = """
    import json, re, sys
    prompt = sys.argv[sys.argv.index("-p") + 1]
    bead_id = re.match(r"# Bead (\\S+):", prompt).group(1)
    if "bad" in bead_id:
        print("refusing", file=sys.stderr)
        sys.exit(2)
    with open(bead_id + ".txt", "w") as f:
        f.write("work for " + bead_id + "\\n")
    print(json.dumps({"type": "assistant", "message": {
        "content": [{"type": "text", "text": "wrote " + bead_id}],
        "usage": {"input_tokens": 100, "output_tokens": 20},
    }}), flush=True)
    print(json.dumps({"type": "result", "result": "wrote " + bead_id,
                      "total_cost_usd": 0.01, "num_turns": 1}), flush=True)
"""


@pytest.fixture
def writer_agent(agent_script):
    """Config whose agent writes one file per bead."""

    def _make(cfg: Config | None = None) -> Config:
        return agent_script(WRITER_AGENT, cfg)

    return _make
