"""Tests for configuration loading, compilation and message templates.

Covers:

1. **Loader** -- TOML decode errors, schema violations, version checks,
   missing files.
2. **Compiler** -- rule tables, specificity scores, aliases, references,
   ``$HOME`` tracking, template validation.
3. **Templates** -- rendering and validation.
"""
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from cc_allow.core.errors import (
    ConfigError,
    ConfigNotFound,
    ConfigSyntaxError,
    CyclicReference,
    InvalidConfig,
    InvalidPattern,
    UnresolvedReference,
    UnsupportedVersion,
)
from cc_allow.core.types import ActionKind, Construct, LayerScope, Verdict
from cc_allow.layers import TomlLayerLoader, load_layer_file, load_layer_text, parse_layer
from cc_allow.matching import PatternKind
from cc_allow.rules import TemplateContext, empty_ruleset, render, validate_template
from cc_allow.rules.compiler import RuleSet

# ===================================================================
# Fixtures
# ===================================================================


def _load(text: str, scope: LayerScope = LayerScope.PROJECT) -> RuleSet:
    return load_layer_text(textwrap.dedent(text), scope=scope, source="test.toml")


def _rule(ruleset: RuleSet, location: str):
    return next(r for r in ruleset.shell.rules if r.location == location)


# ===================================================================
# Test: Loader
# ===================================================================


class TestLoader:
    """Tests for decoding and validating one layer."""

    def test_empty_layer_has_no_opinion(self) -> None:
        """An empty file is a valid layer."""
        ruleset = _load("")
        assert ruleset.shell.default is None
        assert ruleset.shell.rules == ()
        assert ruleset.files[ActionKind.READ].default is None
        assert not ruleset.uses_home

    def test_toml_syntax_error(self) -> None:
        """Invalid TOML is a syntax error."""
        with pytest.raises(ConfigSyntaxError) as exc_info:
            _load("[bash\ndefault = ")
        assert exc_info.value.details["source"] == "test.toml"

    def test_unknown_key_rejected(self) -> None:
        """Unknown keys are schema violations, not ignored."""
        with pytest.raises(InvalidConfig) as exc_info:
            _load("""
                [bash]
                defualt = "allow"
            """)
        assert any("defualt" in problem for problem in exc_info.value.details["errors"])

    def test_bad_action_value(self) -> None:
        """Only allow, deny and ask are actions."""
        with pytest.raises(InvalidConfig):
            _load("""
                [bash]
                default = "maybe"
            """)

    def test_unresolved_commands_cannot_allow(self) -> None:
        """Unresolved commands may only ask or deny."""
        with pytest.raises(InvalidConfig):
            _load("""
                [bash]
                unresolved_commands = "allow"
            """)

    @pytest.mark.parametrize("version", ["2", "v2.0", "2.0.1"])
    def test_bad_version_format(self, version: str) -> None:
        """Versions are ``major.minor``."""
        with pytest.raises(InvalidConfig):
            parse_layer({"version": version})

    def test_newer_version_rejected(self) -> None:
        """A version newer than supported is refused."""
        with pytest.raises(UnsupportedVersion) as exc_info:
            parse_layer({"version": "3.0"}, source="x.toml")
        assert exc_info.value.details["supported"] == "2.0"

    def test_older_version_accepted(self) -> None:
        """Older versions load."""
        assert parse_layer({"version": "1.5"}).version_tuple == (1, 5)

    def test_reserved_alias_prefix(self) -> None:
        """Alias names cannot look like patterns."""
        with pytest.raises(InvalidConfig):
            _load("""
                [aliases]
                "re:x" = "y"
            """)

    def test_session_max_age_validated(self) -> None:
        """``session_max_age`` must be a number and a unit."""
        assert _load('[settings]\nsession_max_age = "7d"').session_max_age == "7d"
        with pytest.raises(InvalidConfig):
            _load('[settings]\nsession_max_age = "7 days"')

    def test_bad_position_key(self) -> None:
        """Position keys are integers."""
        with pytest.raises(InvalidConfig):
            _load("""
                [[bash.deny.git]]
                args.position = { first = "push" }
            """)

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file is reported as not found."""
        with pytest.raises(ConfigNotFound):
            load_layer_file(tmp_path / "nope.toml", LayerScope.EXPLICIT)
        with pytest.raises(ConfigNotFound):
            load_layer_file(tmp_path, LayerScope.EXPLICIT)

    def test_load_file(self, tmp_path: Path) -> None:
        """A file loads with its path as the source."""
        path = tmp_path / "cc-allow.toml"
        path.write_text('[bash]\ndefault = "deny"\n')
        ruleset = TomlLayerLoader().load(str(path), LayerScope.LOCAL)
        assert ruleset.scope is LayerScope.LOCAL
        assert ruleset.source == str(path)
        assert ruleset.shell.default is Verdict.DENY

    def test_errors_are_config_errors(self) -> None:
        """Every load failure shares the config error category."""
        with pytest.raises(ConfigError) as exc_info:
            _load("[read]\ndefault = 1")
        assert exc_info.value.exit_code == 3


# ===================================================================
# Test: Compiler
# ===================================================================


class TestCompiler:
    """Tests for rule compilation."""

    def test_section_knobs(self) -> None:
        """Section-level knobs are carried over."""
        ruleset = _load("""
            [bash]
            default = "ask"
            dynamic_commands = "deny"
            unresolved_commands = "ask"
            default_message = "nope: {{.Command}}"
            allowed_paths = ["/usr/bin", "/bin"]

            [bash.constructs]
            subshells = "deny"
            background = "allow"

            [bash.allow]
            commands = ["ls", "re:^git$"]

            [debug]
            log_file = "/tmp/cc.log"
        """)
        shell = ruleset.shell
        assert shell.default is Verdict.ASK
        assert shell.dynamic_commands is Verdict.DENY
        assert shell.unresolved_commands is Verdict.ASK
        assert shell.default_message == "nope: {{.Command}}"
        assert shell.allowed_paths == ("/usr/bin", "/bin")
        assert shell.constructs[Construct.SUBSHELL] is Verdict.DENY
        assert shell.constructs[Construct.BACKGROUND] is Verdict.ALLOW
        assert shell.constructs[Construct.HEREDOC] is None
        assert [p.raw for p in shell.allow_commands] == ["ls", "re:^git$"]
        assert ruleset.log_file == "/tmp/cc.log"

    def test_default_message_fallback(self) -> None:
        """Without a configured message, a generic one is used."""
        assert empty_ruleset().shell.default_message == "Command not allowed"

    def test_command_specificity(self) -> None:
        """Literal name plus argument conditions add up."""
        ruleset = _load("""
            [[bash.deny.rm]]
            args.any = ["flags:rf", "--recursive"]

            [[bash.allow.rm]]
        """)
        deny = _rule(ruleset, "bash.deny.rm[0]")
        allow = _rule(ruleset, "bash.allow.rm[0]")
        assert deny.specificity == 100 + 2 * 5
        assert allow.specificity == 100
        assert deny.action is Verdict.DENY

    def test_subcommand_nesting_becomes_positions(self) -> None:
        """``[[bash.allow.git.status]]`` pins argument 0."""
        ruleset = _load("""
            [[bash.allow.git.status]]
        """)
        rule = _rule(ruleset, "bash.allow.git.status[0]")
        assert rule.command is not None and rule.command.body == "git"
        assert [(i, [p.raw for p in alts]) for i, alts in rule.args.positions] == [(0, ["status"])]
        assert rule.specificity == 100 + 20

    def test_wildcard_pipe_rule(self) -> None:
        """``*`` matches any command and scores no command points."""
        ruleset = _load("""
            [[bash.deny."*"]]
            pipe.from = ["curl", "re:^wget"]
            message = "no piping downloads into {{.Command}}"
        """)
        rule = _rule(ruleset, "bash.deny.*[0]")
        assert rule.command is None
        assert rule.specificity == 10 + 5
        assert rule.message == "no piping downloads into {{.Command}}"

    def test_pipe_from_any(self) -> None:
        """``from = ["*"]`` means any upstream stage."""
        ruleset = _load("""
            [[bash.ask.bash]]
            pipe.from = "*"
        """)
        rule = _rule(ruleset, "bash.ask.bash[0]")
        assert rule.pipe_from_any
        assert rule.pipe_from == ()
        assert rule.specificity == 100 + 5

    def test_redirect_and_heredoc_specificity(self) -> None:
        """Redirect and heredoc rules carry their own scores."""
        ruleset = _load("""
            [[bash.redirects.deny]]
            paths = ["/etc/hosts", "path:/etc/**"]
            append = true

            [[bash.heredocs.ask]]
            content = ["re:DROP TABLE", "re:rm -rf"]
        """)
        (redirect,) = ruleset.shell.redirect_rules
        (heredoc,) = ruleset.shell.heredoc_rules
        assert redirect.specificity == 10 + 5 + 5
        assert redirect.location == "bash.redirects.deny[0]"
        assert heredoc.specificity == 2 * 10
        assert heredoc.action is Verdict.ASK

    def test_file_access_type_normalized(self) -> None:
        """The access type is case-insensitive."""
        ruleset = _load("""
            [[bash.allow.tee]]
            file_access_type = "Write"
        """)
        assert _rule(ruleset, "bash.allow.tee[0]").file_access_type is ActionKind.WRITE

    def test_aliases_expand(self) -> None:
        """``alias:`` references expand in place, recursively."""
        ruleset = _load("""
            [aliases]
            secrets = ["path:$HOME/.ssh/**", "alias:cloud"]
            cloud = "path:$HOME/.aws/**"

            [read.deny]
            paths = ["alias:secrets", "/etc/shadow"]
        """)
        raws = [p.raw for p in ruleset.files[ActionKind.READ].deny]
        assert raws == ["path:$HOME/.ssh/**", "path:$HOME/.aws/**", "/etc/shadow"]
        assert ruleset.uses_home

    def test_alias_in_args_stays_one_element(self) -> None:
        """An alias expanding to several patterns stays one alternative set."""
        ruleset = _load("""
            [aliases]
            force = ["--force", "-f"]

            [[bash.deny.git.push]]
            args.any = ["alias:force"]
        """)
        rule = _rule(ruleset, "bash.deny.git.push[0]")
        (element,) = rule.args.any
        assert [p.raw for p in element.steps[0][1]] == ["--force", "-f"]
        assert rule.specificity == 100 + 20 + 5

    def test_undefined_alias(self) -> None:
        """An alias that does not exist fails the load."""
        with pytest.raises(UnresolvedReference) as exc_info:
            _load('[bash.deny]\ncommands = ["alias:nope"]')
        assert exc_info.value.details["alias"] == "nope"

    def test_alias_cycle(self) -> None:
        """Aliases referencing each other in a loop fail the load."""
        with pytest.raises(CyclicReference):
            _load("""
                [aliases]
                a = "alias:b"
                b = "alias:a"
            """)

    def test_unknown_ref_target(self) -> None:
        """A ``ref:`` to an unknown list fails the load."""
        with pytest.raises(UnresolvedReference):
            _load('[bash.deny]\ncommands = ["ref:read.nope.paths"]')

    def test_ref_across_sections(self) -> None:
        """Refs may point at other sections' lists."""
        ruleset = _load("""
            [read.deny]
            paths = ["path:/etc/**"]

            [[bash.deny.cat]]
            args.any = ["ref:read.deny.paths"]
        """)
        (element,) = _rule(ruleset, "bash.deny.cat[0]").args.any
        assert element.steps[0][1][0].kind is PatternKind.REF
        assert [p.raw for p in ruleset.references.lookup("read.deny.paths")] == ["path:/etc/**"]

    def test_invalid_regex(self) -> None:
        """A bad regex fails the load."""
        with pytest.raises(InvalidPattern):
            _load('[read.deny]\npaths = ["re:(["]')

    def test_invalid_template(self) -> None:
        """A bad message template fails the load with its location."""
        with pytest.raises(InvalidConfig) as exc_info:
            _load("""
                [bash.deny]
                message = "blocked {{.Nope}}"
            """)
        assert exc_info.value.details["location"] == "bash.deny.message"

    def test_sequence_element(self) -> None:
        """Sequence tables keep their offsets in order."""
        ruleset = _load("""
            [[bash.deny.docker]]
            args.any = [{ "0" = "run", "1" = "--privileged" }]
        """)
        (element,) = _rule(ruleset, "bash.deny.docker[0]").args.any
        assert [(offset, alts[0].raw) for offset, alts in element.steps] == [(0, "run"), (1, "--privileged")]

    def test_search_delegation_flag(self) -> None:
        """Search tools delegate to read rules unless disabled."""
        ruleset = _load("""
            [grep]
            respect_file_rules = false
        """)
        assert ruleset.search[ActionKind.GLOB].delegate_to_read
        assert not ruleset.search[ActionKind.GREP].delegate_to_read
        assert ruleset.path_policy(ActionKind.FETCH) is ruleset.fetch.paths


# ===================================================================
# Test: Templates
# ===================================================================


class TestTemplates:
    """Tests for message templates."""

    def test_render_fields(self) -> None:
        """Known fields are substituted."""
        context = TemplateContext(
            command="git",
            args=("push", "--force", "origin"),
            file_path="/home/u/.ssh/id_rsa",
        )
        assert render("{{.Command}} {{.Arg 1}}", context) == "git --force"
        assert render("{{ .ArgsStr }}", context) == "git push --force origin"
        assert render("{{.FileName}} in {{.FileDir}}", context) == "id_rsa in /home/u/.ssh"

    def test_render_missing_values_empty(self) -> None:
        """Fields the action does not populate render empty."""
        assert render("[{{.URL}}][{{.Arg 7}}]", TemplateContext()) == "[][]"

    def test_render_without_placeholders(self) -> None:
        """Plain text is returned as-is."""
        assert render("no placeholders", TemplateContext()) == "no placeholders"

    def test_body_truncated(self) -> None:
        """Heredoc bodies are cut to a readable length."""
        rendered = render("{{.Body}}", TemplateContext(body="x" * 150))
        assert rendered == "x" * 100 + "..."

    def test_append_renders_bool(self) -> None:
        """``Append`` renders as true/false."""
        assert render("{{.Append}}", TemplateContext(append=True)) == "true"

    @pytest.mark.parametrize(
        "template",
        ["{{.Nope}}", "{{.Arg}}", "{{.Command 1}}", "{{.Command", "{{ Command }}"],
    )
    def test_invalid(self, template: str) -> None:
        """Malformed templates are reported."""
        assert validate_template(template)

    def test_valid(self) -> None:
        """A well-formed template has no problems."""
        assert validate_template("{{.Command}} {{.Arg 0}} {{.TargetFileName}}") == []
