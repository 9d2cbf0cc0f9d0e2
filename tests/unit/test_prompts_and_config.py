from __future__ import annotations

from pathlib import Path

import pytest

from dagent.config import DEFAULT_CONFIG_TEMPLATE, ConfigError, load_config, merge_config
from dagent.orchestrator import OrchestratorOptions
from dagent.prompts import (
    DEFAULT_PLAN_REMINDER,
    DEFAULT_SYSTEM_PROMPT,
    find_agent_files,
    render_agents_guidance,
    render_project_guidance,
    render_system_prompt,
)
from dagent.tools.turn_logs import TurnLogWriter, load_turn_log
from dagent.utils.slug import slugify


def test_find_agent_files_skips_vcs_and_vendor_dirs(tmp_path: Path) -> None:
    (tmp_path / "AGENTS.md").write_text("root rules", encoding="utf-8")
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "agents.md").write_text("package rules", encoding="utf-8")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "AGENTS.md").write_text("ignored", encoding="utf-8")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "AGENTS.md").write_text("ignored", encoding="utf-8")

    found = [path.relative_to(tmp_path).as_posix() for path in find_agent_files(tmp_path)]
    assert found == ["AGENTS.md", "pkg/agents.md"]


def test_agents_guidance_is_appended_to_system_prompt(tmp_path: Path) -> None:
    (tmp_path / "AGENTS.md").write_text("Always run tests.\n", encoding="utf-8")
    (tmp_path / "empty").mkdir()
    (tmp_path / "empty" / "AGENTS.md").write_text("   \n", encoding="utf-8")

    guidance = render_agents_guidance(tmp_path)
    assert guidance == "File: AGENTS.md\nAlways run tests."

    prompt = render_system_prompt(augmentation="Use bash.", workspace_root=tmp_path)
    assert prompt.startswith(DEFAULT_SYSTEM_PROMPT)
    assert "Use bash." in prompt
    assert "Always run tests." in prompt
    assert f"workspace_root: {tmp_path.as_posix()}" in prompt


def test_agents_guidance_can_be_disabled(tmp_path: Path) -> None:
    (tmp_path / "AGENTS.md").write_text("secret rules", encoding="utf-8")
    prompt = render_system_prompt(workspace_root=tmp_path, include_agents=False)
    assert "secret rules" not in prompt


def test_project_guidance_renders_bullets() -> None:
    assert render_project_guidance([]) == ""
    assert render_project_guidance(["  ", "Keep diffs small. "]) == "## Project Guidance\n- Keep diffs small."


def test_load_config_defaults_when_missing(tmp_path: Path) -> None:
    config = load_config(tmp_path / "absent.yaml")
    assert config == DEFAULT_CONFIG_TEMPLATE
    assert config is not DEFAULT_CONFIG_TEMPLATE


def test_load_config_merges_sections(tmp_path: Path) -> None:
    path = tmp_path / "dagent.yaml"
    path.write_text("runtime:\n  auto_approve: true\nmodels:\n  default: other\n", encoding="utf-8")

    config = load_config(path)
    assert config["runtime"]["auto_approve"] is True
    assert config["runtime"]["no_human"] is False
    assert config["models"]["default"] == "other"
    assert config["models"]["timeout"] == DEFAULT_CONFIG_TEMPLATE["models"]["timeout"]


def test_load_config_rejects_non_mapping(tmp_path: Path) -> None:
    path = tmp_path / "dagent.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)


def test_load_config_required_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yaml", required=True)


def test_merge_config_replaces_scalars_and_lists() -> None:
    base = {"a": {"b": 1, "c": [1]}, "d": 1}
    merge_config(base, {"a": {"c": [2]}, "e": 2})
    assert base == {"a": {"b": 1, "c": [2]}, "d": 1, "e": 2}


def test_options_from_config_fall_back_to_default_texts() -> None:
    options = OrchestratorOptions.from_config(
        {"runtime": {"auto_approve": True, "plan_reminder": "", "max_turns": 0}},
    )
    assert options.auto_approve is True
    assert options.plan_reminder == DEFAULT_PLAN_REMINDER
    assert options.max_turns is None


def test_turn_log_writer_persists_exchange(tmp_path: Path) -> None:
    writer = TurnLogWriter(root=tmp_path, session="gpt/4.1 mini")
    path = writer({"model": "m"}, '{"choices": []}', None)
    error_path = writer({"model": "m"}, None, RuntimeError("boom"))

    assert path is not None and path.parent.name == "gpt-4.1-mini"
    assert path.name.startswith("turn__1__")
    entry = load_turn_log(path)
    assert entry.turn == 1
    assert entry.request == {"model": "m"}
    assert entry.response == {"choices": []}
    assert entry.error is None

    assert error_path is not None
    failed = load_turn_log(error_path)
    assert failed.turn == 2
    assert failed.error == "boom"


def test_turn_log_writer_ignores_unwritable_root(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("", encoding="utf-8")
    writer = TurnLogWriter(root=blocker)
    assert writer({}, None, None) is None


def test_slugify_limits_length() -> None:
    assert slugify("Hello World!") == "hello-world"
    assert slugify("") == "item"
    long = slugify("x" * 200, max_length=20)
    assert len(long) == 20


def test_options_from_config_read_approved_commands() -> None:
    options = OrchestratorOptions.from_config({"runtime": {"approved_commands": ["ls", {"name": "git"}]}})
    assert options.approved_commands == ["ls", {"name": "git"}]
    assert OrchestratorOptions.from_config({"runtime": {"approved_commands": "ls"}}).approved_commands == []
