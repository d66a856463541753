from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .config import ConfigError, ConfigStore
from .constants import REPOS_PREFIX


class Stage(Enum):
    CLONE = "clone"
    BUILD = "build"
    ENV = "env"
    TEST = "test"
    BUNDLE = "bundle"
    DEPOSIT = "deposit"
    DEPLOY = "deploy"
    CLEAN = "clean"

    @classmethod
    def ordered(cls) -> Iterable["Stage"]:
        return (
            cls.CLONE,
            cls.BUILD,
            cls.ENV,
            cls.TEST,
            cls.BUNDLE,
            cls.DEPOSIT,
            cls.DEPLOY,
            cls.CLEAN,
        )

    @classmethod
    def from_name(cls, name: str, *, key: str = "stage") -> "Stage":
        try:
            return cls(name.strip().lower())
        except ValueError as exc:
            choices = ", ".join(stage.value for stage in cls.ordered())
            raise ConfigError(f"Unknown stage {name!r} for {key}; expected one of: {choices}") from exc


@dataclass(frozen=True)
class TargetList:
    """Ordered stages every repository is provisioned through, up to its target."""

    stages: Tuple[Stage, ...]

    def __post_init__(self) -> None:
        if not self.stages:
            raise ValueError("A target list needs at least one stage")
        if len(set(self.stages)) != len(self.stages):
            raise ValueError("A target list cannot repeat a stage")

    @property
    def last(self) -> Stage:
        return self.stages[-1]

    def position(self, stage: Stage) -> int:
        try:
            return self.stages.index(stage)
        except ValueError as exc:
            raise ConfigError(f"Stage {stage.value} is not part of the target list") from exc

    def through(self, target: Stage) -> Tuple[Stage, ...]:
        return self.stages[: self.position(target) + 1]

    def names(self) -> List[str]:
        return [stage.value for stage in self.stages]

    def __iter__(self) -> Iterator[Stage]:
        return iter(self.stages)

    def __len__(self) -> int:
        return len(self.stages)


DEFAULT_TARGETS = TargetList(tuple(Stage.ordered()))


@dataclass(frozen=True)
class RepoSpec:
    """Repository declaration read from the ``development.repos.<id>`` namespace."""

    id: str
    path: Optional[str] = None
    deps: Tuple[str, ...] = ()
    skipped: bool = False
    target: Optional[Stage] = None
    stage_overrides: Mapping[Stage, bool] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: ConfigStore, repo_id: str) -> "RepoSpec":
        prefix = f"{REPOS_PREFIX}{repo_id}."
        raw_deps = config.get(prefix + "deps") or ""
        deps = tuple(dep.strip() for dep in raw_deps.split(",") if dep.strip())

        target_key = prefix + "provision.target"
        raw_target = config.get(target_key)
        target = Stage.from_name(raw_target, key=target_key) if raw_target and raw_target.strip() else None

        overrides: Dict[Stage, bool] = {}
        for stage in Stage.ordered():
            stage_key = f"{prefix}provision.{stage.value}"
            if stage_key in config:
                overrides[stage] = config.flag(stage_key, default=True)

        return cls(
            id=repo_id,
            path=config.get(prefix + "path") or None,
            deps=deps,
            skipped=config.flag(prefix + "skipped", default=False),
            target=target,
            stage_overrides=overrides,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "deps": list(self.deps),
            "skipped": self.skipped,
            "target": self.target.value if self.target else None,
            "stage_overrides": {stage.value: enabled for stage, enabled in self.stage_overrides.items()},
        }


def load_repo_specs(config: ConfigStore) -> Dict[str, RepoSpec]:
    """Parse every declared repository, keeping declaration order."""

    return {repo_id: RepoSpec.from_config(config, repo_id) for repo_id in config.repo_ids()}
