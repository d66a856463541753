from __future__ import annotations

import os
from pathlib import Path
from typing import List

import pytest

from provisioner.composer import (
    ScriptComposer,
    compose,
    enabled_stages,
    resolve_platform,
    resolve_target,
    stage_enabled,
)
from provisioner.config import ConfigError, ConfigStore
from provisioner.models import DEFAULT_TARGETS, RepoSpec, Stage, TargetList
from provisioner.resolver import resolve_repos
from provisioner.scriptlets import ScriptletLibrary

TWO_REPOS = (
    "development.repos.A.path=/src/a\n"
    "development.repos.A.provision.target=build\n"
    "development.repos.B.deps=A\n"
    "development.repos.B.provision.target=build\n"
)

TWO_REPO_PLAN = [
    "common/linux/apt/pre.sh",
    "common/linux/pre.sh",
    "A/linux/pre.sh",
    "A/linux/apt/pre.sh",
    "A/linux/clone.sh",
    "A/linux/build.sh",
    "A/linux/apt/post.sh",
    "A/linux/post.sh",
    "B/linux/pre.sh",
    "B/linux/apt/pre.sh",
    "B/linux/clone.sh",
    "B/linux/build.sh",
    "B/linux/apt/post.sh",
    "B/linux/post.sh",
    "common/linux/post.sh",
    "common/linux/apt/post.sh",
]


def _write_scriptlets(root: Path, relative_paths: List[str]) -> None:
    for index, relative in enumerate(relative_paths):
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        body = f"echo {relative}\n"
        if index == 0:
            body = "#!/bin/sh\n" + body
        path.write_text(body)


def _composer(root: Path, text: str, packager: str | None = "apt") -> ScriptComposer:
    config = ConfigStore.from_text(text)
    return ScriptComposer(config, ScriptletLibrary.from_directory(root), "linux", packager=packager)


def test_stage_enabled_override_chain() -> None:
    assert stage_enabled(Stage.BUILD, {}, {}) is True
    assert stage_enabled(Stage.BUILD, {}, {Stage.BUILD: False}) is False
    assert stage_enabled(Stage.BUILD, {Stage.BUILD: True}, {Stage.BUILD: False}) is True
    assert stage_enabled(Stage.BUILD, {Stage.BUILD: False}, {}) is False
    assert stage_enabled(Stage.BUILD, {Stage.TEST: False}, {Stage.ENV: False}) is True


def test_resolve_target_defaults_to_last_stage() -> None:
    assert resolve_target(RepoSpec(id="core"), DEFAULT_TARGETS) is Stage.CLEAN
    assert resolve_target(RepoSpec(id="core", target=Stage.ENV), DEFAULT_TARGETS) is Stage.ENV


def test_target_outside_custom_target_list_is_rejected() -> None:
    targets = TargetList((Stage.CLONE, Stage.BUILD))
    with pytest.raises(ConfigError):
        resolve_target(RepoSpec(id="core", target=Stage.DEPLOY), targets)


def test_unknown_target_name_is_rejected() -> None:
    config = ConfigStore.from_text("development.repos.core.provision.target=ship\n")
    with pytest.raises(ConfigError):
        RepoSpec.from_config(config, "core")


def test_disabled_stage_before_target_is_omitted() -> None:
    config = ConfigStore.from_text(
        "development.repos.web.provision.target=env\n"
        "development.repos.web.provision.build=N\n"
    )
    spec = RepoSpec.from_config(config, "web")
    assert enabled_stages(spec, DEFAULT_TARGETS, {}) == [Stage.CLONE, Stage.ENV]


def test_stages_after_target_are_never_consulted(tmp_path: Path) -> None:
    composer = _composer(
        tmp_path,
        "development.repos.web.provision.target=build\n"
        "development.repos.web.provision.deploy=Y\n"
        "development.provision.deploy=Y\n",
        packager=None,
    )
    paths = [key.relative_path() for key in composer.plan(["web"])]
    assert "web/linux/clone.sh" in paths
    assert "web/linux/build.sh" in paths
    assert "web/linux/deploy.sh" not in paths
    assert "web/linux/env.sh" not in paths


def test_plan_follows_inclusion_order(tmp_path: Path) -> None:
    config = ConfigStore.from_text(TWO_REPOS)
    composer = ScriptComposer(config, ScriptletLibrary.from_directory(tmp_path), "linux", packager="apt")
    order = resolve_repos(config)
    assert order == ["A", "B"]
    assert [key.relative_path() for key in composer.plan(order)] == TWO_REPO_PLAN


def test_composed_script_keeps_order_and_interpreter_line(tmp_path: Path) -> None:
    _write_scriptlets(tmp_path, TWO_REPO_PLAN)
    script = _composer(tmp_path, TWO_REPOS).compose(["A", "B"])
    text = script.text

    assert text.startswith("#!/bin/sh\necho common/linux/apt/pre.sh\n")
    assert "# >>> begin scriptlet common/linux/apt/pre.sh" not in text
    assert "# <<< end scriptlet common/linux/apt/pre.sh\n" in text
    positions = [text.index(f"echo {relative}\n") for relative in TWO_REPO_PLAN]
    assert positions == sorted(positions)
    for relative in TWO_REPO_PLAN[1:]:
        assert f"# >>> begin scriptlet {relative}\necho {relative}\n# <<< end scriptlet {relative}\n" in text
    assert not script.missing


def test_absent_scriptlet_leaves_marker_and_composition_continues(tmp_path: Path) -> None:
    present = [relative for relative in TWO_REPO_PLAN if relative != "B/linux/build.sh"]
    _write_scriptlets(tmp_path, present)
    script = _composer(tmp_path, TWO_REPOS).compose(["A", "B"])
    text = script.text

    marker = "# --- scriptlet B/linux/build.sh not loaded: not found\n"
    assert marker in text
    assert text.index("echo B/linux/clone.sh") < text.index(marker) < text.index("echo B/linux/apt/post.sh")
    assert text.rstrip().endswith("# <<< end scriptlet common/linux/apt/post.sh")
    assert [fragment.path for fragment in script.missing] == ["B/linux/build.sh"]


def test_empty_library_still_composes(tmp_path: Path) -> None:
    script = _composer(tmp_path, TWO_REPOS).compose(["A", "B"])
    lines = script.text.splitlines()
    assert len(lines) == len(TWO_REPO_PLAN)
    assert all("not loaded: not found" in line for line in lines)


def test_first_absent_scriptlet_does_not_shift_begin_marker_rule(tmp_path: Path) -> None:
    _write_scriptlets(tmp_path, ["x/linux/ignored.sh", "common/linux/pre.sh"])
    script = _composer(tmp_path, TWO_REPOS).compose(["A", "B"])
    assert script.text.startswith("# --- scriptlet common/linux/apt/pre.sh not loaded")
    assert "# >>> begin scriptlet common/linux/pre.sh\n" in script.text


def test_composition_is_idempotent(tmp_path: Path) -> None:
    _write_scriptlets(tmp_path, TWO_REPO_PLAN[::2])
    first = _composer(tmp_path, TWO_REPOS).compose(["A", "B"]).text
    second = _composer(tmp_path, TWO_REPOS).compose(["A", "B"]).text
    assert first == second


def test_without_packager_package_manager_scriptlets_are_skipped(tmp_path: Path) -> None:
    composer = _composer(tmp_path, TWO_REPOS, packager=None)
    paths = [key.relative_path() for key in composer.plan(["A"])]
    assert paths == [
        "common/linux/pre.sh",
        "A/linux/pre.sh",
        "A/linux/clone.sh",
        "A/linux/build.sh",
        "A/linux/post.sh",
        "common/linux/post.sh",
    ]


def test_global_override_applies_unless_repo_overrides(tmp_path: Path) -> None:
    composer = _composer(
        tmp_path,
        "development.provision.clone=N\n"
        "development.repos.A.path=/src/a\n"
        "development.repos.A.provision.target=env\n"
        "development.repos.B.provision.target=env\n"
        "development.repos.B.provision.clone=Y\n",
        packager=None,
    )
    paths = [key.relative_path() for key in composer.plan(["A", "B"])]
    assert "A/linux/clone.sh" not in paths
    assert "B/linux/clone.sh" in paths


def test_reserved_common_repository_is_rejected(tmp_path: Path) -> None:
    composer = _composer(tmp_path, "development.repos.common.path=/src/common\n")
    with pytest.raises(ConfigError):
        composer.plan(["common"])


def test_module_compose_and_write(tmp_path: Path) -> None:
    library_root = tmp_path / "scriptlets"
    _write_scriptlets(library_root, TWO_REPO_PLAN)
    config = ConfigStore.from_text(TWO_REPOS)
    script = compose(["A", "B"], config, library=ScriptletLibrary.from_directory(library_root), os_family="linux", packager="apt")

    target = script.write(tmp_path / "out" / "provision.sh")
    assert target.read_text() == script.text
    assert os.access(target, os.X_OK)


def test_resolve_platform_prefers_explicit_values() -> None:
    config = ConfigStore.from_text("development.os=linux\ndevelopment.packager=apt\n")
    assert resolve_platform(config) == ("linux", "apt")
    assert resolve_platform(config, "darwin", "brew") == ("darwin", "brew")
    assert resolve_platform(ConfigStore.from_text("development.os=linux\n")) == ("linux", None)
    with pytest.raises(ConfigError):
        resolve_platform(ConfigStore.from_text(""))
