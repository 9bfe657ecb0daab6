"""Tests for the ``cc-allow`` command line and hook mode.

The CLI discovers layers from the process environment, so every test
points ``HOME`` and ``CC_PROJECT_DIR`` at temporary directories.
"""
from __future__ import annotations

import json
import logging
import textwrap
from pathlib import Path

import pytest
from typer.testing import CliRunner

from cc_allow import __version__
from cc_allow.cli import ALLOWED_REASON, app

# ===================================================================
# Fixtures
# ===================================================================

PROJECT_CONFIG = """
    [bash]
    default = "ask"

    [bash.allow]
    commands = ["ls", "echo"]

    [[bash.deny.rm]]
    args.any = ["flags:rf"]
    message = "refusing {{.Command}} -rf"

    [read.deny]
    paths = ["path:$PROJECT_ROOT/secrets/**"]
"""

runner = CliRunner()


@pytest.fixture(autouse=True)
def _restore_logger():
    log = logging.getLogger("cc_allow")
    saved = (list(log.handlers), log.level, log.propagate)
    yield
    for handler in log.handlers:
        if handler not in saved[0]:
            handler.close()
    log.handlers[:], log.level, log.propagate = saved[0], saved[1], saved[2]


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    root = tmp_path.resolve()
    home = root / "home"
    home.mkdir()
    work = root / "work"
    (work / ".config").mkdir(parents=True)
    (work / ".config" / "cc-allow.toml").write_text(textwrap.dedent(PROJECT_CONFIG))
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("CC_PROJECT_DIR", str(work))
    monkeypatch.chdir(work)
    return work


# ===================================================================
# Test: Plain mode
# ===================================================================


class TestPlainMode:
    """Tests for exit-status reporting."""

    def test_allow(self, project: Path) -> None:
        """Allowed input exits 0 silently."""
        result = runner.invoke(app, ["ls -la"])
        assert result.exit_code == 0
        assert result.output == ""

    def test_ask(self, project: Path) -> None:
        """Unlisted commands exit 1."""
        result = runner.invoke(app, ["curl https://example.com"])
        assert result.exit_code == 1
        assert "Ask: command curl" in result.output

    def test_deny(self, project: Path) -> None:
        """Denied input exits 2 with the rendered message and rule location."""
        result = runner.invoke(app, ["rm -rf build"])
        assert result.exit_code == 2
        assert "Deny: refusing rm -rf (bash.deny.rm[0])" in result.output

    def test_stdin(self, project: Path) -> None:
        """Without an argument the input is read from stdin."""
        result = runner.invoke(app, [], input="echo hi\n")
        assert result.exit_code == 0

    def test_read_tool(self, project: Path) -> None:
        """``--tool`` selects the action kind."""
        result = runner.invoke(app, ["--tool", "Read", "secrets/token"])
        assert result.exit_code == 2

    def test_unknown_tool(self, project: Path) -> None:
        """An unknown tool name is an error."""
        result = runner.invoke(app, ["--tool", "Teleport", "x"])
        assert result.exit_code == 3
        assert "unknown tool" in result.output

    def test_parse_error(self, project: Path) -> None:
        """Malformed shell input exits 3."""
        result = runner.invoke(app, ["| grep x"])
        assert result.exit_code == 3
        assert "Error:" in result.output

    def test_config_error(self, project: Path) -> None:
        """A broken configuration file exits 3."""
        (project / ".config" / "cc-allow.toml").write_text("[bash\n")
        result = runner.invoke(app, ["ls"])
        assert result.exit_code == 3
        assert "Error:" in result.output

    def test_explicit_config(self, project: Path, tmp_path: Path) -> None:
        """``--config`` layers apply after the discovered ones."""
        extra = tmp_path / "extra.toml"
        extra.write_text('[bash.deny]\ncommands = ["ls"]\n')
        result = runner.invoke(app, ["--config", str(extra), "ls"])
        assert result.exit_code == 2

    def test_version(self) -> None:
        """``--version`` prints the version and exits 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"cc-allow {__version__}" in result.output


# ===================================================================
# Test: Hook mode
# ===================================================================


def _hook(payload: dict) -> dict:
    result = runner.invoke(app, ["--hook"], input=json.dumps(payload))
    assert result.exit_code == 0
    return json.loads(result.stdout)["hookSpecificOutput"]


class TestHookMode:
    """Tests for PreToolUse JSON output."""

    def test_allow(self, project: Path) -> None:
        """Allowed payloads report the fixed reason."""
        output = _hook({"tool_name": "Bash", "tool_input": {"command": "ls"}})
        assert output["hookEventName"] == "PreToolUse"
        assert output["permissionDecision"] == "allow"
        assert output["permissionDecisionReason"] == ALLOWED_REASON

    def test_deny(self, project: Path) -> None:
        """Deny reports the rule message and still exits 0."""
        output = _hook({"tool_name": "Bash", "tool_input": {"command": "rm -rf /"}})
        assert output["permissionDecision"] == "deny"
        assert output["permissionDecisionReason"] == "refusing rm -rf"

    def test_ask_names_unit(self, project: Path) -> None:
        """Ask reasons name the deciding unit."""
        output = _hook({"tool_name": "Bash", "tool_input": {"command": "ls | wc -l"}})
        assert output["permissionDecision"] == "ask"
        assert output["permissionDecisionReason"].startswith("command wc: ")

    def test_file_tool(self, project: Path) -> None:
        """File tools use ``file_path``."""
        output = _hook({"tool_name": "Read", "tool_input": {"file_path": "secrets/key.pem"}})
        assert output["permissionDecision"] == "deny"

    def test_unknown_tool(self, project: Path) -> None:
        """Unknown hook tools ask."""
        output = _hook({"tool_name": "Task", "tool_input": {}})
        assert output["permissionDecision"] == "ask"
        assert output["permissionDecisionReason"] == "unknown tool: Task"

    def test_invalid_json(self, project: Path) -> None:
        """An unreadable payload exits 3."""
        result = runner.invoke(app, ["--hook"], input="{not json")
        assert result.exit_code == 3


# ===================================================================
# Test: Configuration listing
# ===================================================================


class TestFmtMode:
    """Tests for ``--fmt`` validation and rule listing."""

    def test_lists_rules_by_specificity(self, project: Path, tmp_path: Path) -> None:
        """Rules from every layer are listed most specific first."""
        extra = tmp_path / "extra.toml"
        extra.write_text("[[bash.allow.git.status]]\n\n[[bash.ask.git]]\n")
        result = runner.invoke(app, ["--fmt", "--config", str(extra)])
        assert result.exit_code == 0
        output = result.stdout
        assert "Command Rules (by specificity)" in output
        assert output.index("[120] allow bash.allow.git.status[0]") < output.index("[105] deny bash.deny.rm[0]")
        assert output.index("[105] deny bash.deny.rm[0]") < output.index("[100] ask bash.ask.git[0]")
        assert f"source: {extra}" in output
        assert "bash.default = 'ask'" in output
        assert output.rstrip().endswith("Validation passed.")

    def test_reads_no_input(self, project: Path) -> None:
        """Listing never waits for a command on stdin."""
        result = runner.invoke(app, ["--fmt"], input="rm -rf /\n")
        assert result.exit_code == 0
        assert "Deny:" not in result.output

    def test_invalid_layer(self, project: Path) -> None:
        """An invalid layer fails validation with exit 3."""
        (project / ".config" / "cc-allow.toml").write_text('[bash.deny]\ncommands = ["re:("]\n')
        result = runner.invoke(app, ["--fmt"])
        assert result.exit_code == 3
        assert "Error:" in result.output
        assert "Validation passed." not in result.output
