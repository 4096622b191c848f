"""Tests for the berth command line."""

import pytest

from berth.cli import EXIT_ERROR, EXIT_FAILED, EXIT_OK, main


@pytest.fixture
def plan_file(tmp_path):
    def _write(text):
        path = tmp_path / "plan.yaml"
        path.write_text(text)
        return str(path)

    return _write


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("BERTH_MODEL", "BERTH_MAX_PARALLEL", "BERTH_CLAUDE_BIN"):
        monkeypatch.delenv(name, raising=False)


def test_dry_run(plan_file, tmp_path, capsys):
    path = plan_file("- id: bt-1\n- id: bt-2\n  depends_on: [bt-1]\n")

    code = main([path, "--dry-run", "--project-root", str(tmp_path)])

    assert code == EXIT_OK
    out = capsys.readouterr().out
    assert "Group 0: bt-1" in out
    assert "Group 1: bt-2" in out


def test_cycle_is_usage_error(plan_file, tmp_path, capsys):
    path = plan_file("- id: bt-1\n  depends_on: [bt-2]\n- id: bt-2\n  depends_on: [bt-1]\n")

    assert main([path, "-n", "-p", str(tmp_path)]) == EXIT_ERROR
    assert "Circular dependency" in capsys.readouterr().err


def test_missing_plan(tmp_path, capsys):
    assert main([str(tmp_path / "nope.yaml"), "-p", str(tmp_path)]) == EXIT_ERROR
    assert "Cannot read" in capsys.readouterr().err


def test_missing_project_root(plan_file, tmp_path):
    path = plan_file("- id: bt-1\n")
    assert main([path, "-p", str(tmp_path / "absent")]) == EXIT_ERROR


def test_full_run_exit_codes(plan_file, git_repo, writer_agent, monkeypatch, capsys):
    cfg = writer_agent()
    monkeypatch.setenv("BERTH_CLAUDE_BIN", " ".join(cfg.execution.claude_command))

    ok_plan = plan_file("- id: bt-1\n- id: bt-2\n  depends_on: [bt-1]\n")
    assert main([ok_plan, "-p", str(git_repo), "-c", "1"]) == EXIT_OK
    out = capsys.readouterr().out
    assert "[bt-1] success" in out
    assert "2 completed, 0 failed, 0 skipped" in out

    bad_plan = plan_file("- id: bt-bad\n- id: bt-9\n  depends_on: [bt-bad]\n")
    assert main([bad_plan, "-p", str(git_repo), "--fresh"]) == EXIT_FAILED
    out = capsys.readouterr().out
    assert "[bt-bad] failed:" in out
    assert "[bt-9] skipped" in out


def test_help_lists_options(capsys):
    with pytest.raises(SystemExit):
        main(["--help"])
    out = capsys.readouterr().out
    assert "--max-parallel" in out
    assert "--fresh" in out
