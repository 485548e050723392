from pathlib import Path
import textwrap

import pytest

from openbot.approval import ApprovalPolicy, SandboxMode
from openbot.profiles import DEFAULT_INSTRUCTIONS, ProfileLoadError, ProfileLoader, split_frontmatter


def write_config(home: Path, name: str, text: str) -> Path:
    path = home / "bots" / name / "config.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text).lstrip(), encoding="utf-8")
    return path


def test_loader_reads_frontmatter_and_body(tmp_path: Path) -> None:
    write_config(
        tmp_path,
        "reviewer",
        """
        ---
        description: Reviews pull requests
        max_iterations: 3
        sleep_secs: 5
        stop_phrase: LGTM
        sandbox: read-only
        approval_policy: untrusted
        use_worktree: false
        ---
        Review the open branch and leave notes.
        """,
    )

    profile = ProfileLoader(tmp_path).load("reviewer")

    assert profile.name == "reviewer"
    assert profile.description == "Reviews pull requests"
    assert profile.instructions == "Review the open branch and leave notes."
    assert profile.max_iterations == 3
    assert profile.sleep_secs == 5
    assert profile.stop_phrase == "LGTM"
    assert profile.sandbox is SandboxMode.READ_ONLY
    assert profile.approval_policy is ApprovalPolicy.UNTRUSTED
    assert profile.use_worktree is False


def test_loader_defaults_when_config_missing(tmp_path: Path) -> None:
    profile = ProfileLoader(tmp_path).load("fresh")

    assert profile.name == "fresh"
    assert profile.instructions == DEFAULT_INSTRUCTIONS
    assert profile.max_iterations == 10
    assert profile.stop_phrase == "TASK COMPLETE"
    assert profile.approval_policy is None


def test_body_without_frontmatter_becomes_instructions(tmp_path: Path) -> None:
    write_config(tmp_path, "plain", "Just do the work.\n")

    profile = ProfileLoader(tmp_path).load("plain")

    assert profile.instructions == "Just do the work."


def test_blank_values_fall_back(tmp_path: Path) -> None:
    write_config(tmp_path, "blank", "---\nstop_phrase: ''\nmodel: '  '\n---\n")

    profile = ProfileLoader(tmp_path).load("blank")

    assert profile.instructions == DEFAULT_INSTRUCTIONS
    assert profile.stop_phrase is None
    assert profile.model is None


@pytest.mark.parametrize(
    "text",
    [
        "---\nmax_iterations: -1\n---\nbody\n",
        "---\nsandbox: everything\n---\nbody\n",
        "---\n- not\n- a mapping\n---\nbody\n",
        "---\nkey: [unclosed\n---\nbody\n",
    ],
)
def test_loader_reports_invalid_config(tmp_path: Path, text: str) -> None:
    write_config(tmp_path, "broken", text)

    with pytest.raises(ProfileLoadError):
        ProfileLoader(tmp_path).load("broken")


def test_list_and_load_all(tmp_path: Path) -> None:
    write_config(tmp_path, "beta", "Beta instructions\n")
    write_config(tmp_path, "alpha", "Alpha instructions\n")
    loader = ProfileLoader(tmp_path)

    assert loader.list_bots() == ["alpha", "beta"]
    assert loader.load_all()["alpha"].instructions == "Alpha instructions"

    write_config(tmp_path, "gamma", "---\nsleep_secs: -5\n---\n")
    with pytest.raises(ProfileLoadError):
        loader.load_all()


def test_loader_handles_missing_home(tmp_path: Path) -> None:
    loader = ProfileLoader(tmp_path / "nowhere")

    assert loader.list_bots() == []
    assert loader.load_all() == {}


def test_with_overrides_ignores_none(tmp_path: Path) -> None:
    profile = ProfileLoader(tmp_path).load("writer")

    updated = profile.with_overrides(max_iterations=0, model=None, sandbox="danger-full-access")

    assert updated.max_iterations == 0
    assert updated.model is None
    assert updated.sandbox is SandboxMode.DANGER_FULL_ACCESS
    assert profile.with_overrides(model=None) is profile


def test_split_frontmatter_without_block() -> None:
    assert split_frontmatter("# Title\n\ntext\n") == ({}, "# Title\n\ntext")
    assert split_frontmatter("---\nname: x\n---\n") == ({"name": "x"}, "")
