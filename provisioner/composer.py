"""Assembly of the provisioning script from scriptlets.

The composed script is laid out as::

    common pre (package manager, then generic)
    for each repository, in dependency order:
        generic pre, package manager pre,
        one scriptlet per enabled stage up to the repository target,
        package manager post, generic post
    common post (generic, then package manager)

Every scriptlet is wrapped in begin/end marker comments naming its path,
except the first one of the script, which keeps its interpreter line on top.
Scriptlets that cannot be read are replaced by a ``not loaded`` comment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .config import ConfigError, ConfigStore
from .constants import COMMON_SCOPE, OS_FAMILY_KEY, PACKAGER_KEY, PROVISION_PREFIX
from .models import DEFAULT_TARGETS, RepoSpec, Stage, TargetList, load_repo_specs
from .scriptlets import FragmentKey, FragmentLookup, ScriptletLibrary
from .utils import write_executable

logger = logging.getLogger(__name__)

BEGIN_MARKER = "# >>> begin scriptlet {path}"
END_MARKER = "# <<< end scriptlet {path}"
NOT_LOADED_MARKER = "# --- scriptlet {path} not loaded: {reason}"


def stage_enabled(
    stage: Stage,
    repo_overrides: Mapping[Stage, bool],
    global_overrides: Mapping[Stage, bool],
) -> bool:
    """Per-repository override, then global override, then enabled."""

    if stage in repo_overrides:
        return repo_overrides[stage]
    if stage in global_overrides:
        return global_overrides[stage]
    return True


def global_stage_overrides(config: ConfigStore) -> Dict[Stage, bool]:
    overrides: Dict[Stage, bool] = {}
    for stage in Stage.ordered():
        key = f"{PROVISION_PREFIX}{stage.value}"
        if key in config:
            overrides[stage] = config.flag(key, default=True)
    return overrides


def resolve_target(spec: RepoSpec, targets: TargetList) -> Stage:
    """The stage a repository is provisioned up to: its override or the last stage."""

    target = spec.target or targets.last
    targets.position(target)
    return target


def enabled_stages(
    spec: RepoSpec,
    targets: TargetList,
    global_overrides: Mapping[Stage, bool],
) -> List[Stage]:
    return [
        stage
        for stage in targets.through(resolve_target(spec, targets))
        if stage_enabled(stage, spec.stage_overrides, global_overrides)
    ]


def resolve_platform(
    config: ConfigStore,
    os_family: Optional[str] = None,
    packager: Optional[str] = None,
) -> Tuple[str, Optional[str]]:
    """Pick the OS family and package manager, preferring explicit values over the store."""

    os_family = os_family or config.get(OS_FAMILY_KEY)
    packager = packager or config.get(PACKAGER_KEY)
    if not os_family or not os_family.strip():
        raise ConfigError(f"No OS family configured; set {OS_FAMILY_KEY} or pass --os")
    return os_family.strip(), packager.strip() if packager and packager.strip() else None


def render(fragments: Sequence[FragmentLookup]) -> str:
    chunks: List[str] = []
    for index, fragment in enumerate(fragments):
        if not fragment.loaded:
            chunks.append(NOT_LOADED_MARKER.format(path=fragment.path, reason=fragment.reason) + "\n")
            continue
        if index:
            chunks.append(BEGIN_MARKER.format(path=fragment.path) + "\n")
        content = fragment.content or ""
        if content and not content.endswith("\n"):
            content += "\n"
        chunks.append(content)
        chunks.append(END_MARKER.format(path=fragment.path) + "\n")
    return "".join(chunks)


@dataclass(frozen=True)
class ComposedScript:
    fragments: Tuple[FragmentLookup, ...]

    @property
    def text(self) -> str:
        return render(self.fragments)

    @property
    def loaded(self) -> List[FragmentLookup]:
        return [fragment for fragment in self.fragments if fragment.loaded]

    @property
    def missing(self) -> List[FragmentLookup]:
        return [fragment for fragment in self.fragments if not fragment.loaded]

    def write(self, path: str | Path) -> Path:
        return write_executable(path, self.text)


class ScriptComposer:
    """Selects the scriptlets for an ordered set of repositories and concatenates them."""

    def __init__(
        self,
        config: ConfigStore,
        library: ScriptletLibrary,
        os_family: str,
        packager: Optional[str] = None,
        targets: TargetList = DEFAULT_TARGETS,
        specs: Optional[Mapping[str, RepoSpec]] = None,
    ) -> None:
        self.config = config
        self.library = library
        self.os_family = os_family
        self.packager = packager
        self.targets = targets
        self._specs = dict(specs) if specs is not None else load_repo_specs(config)
        self._global_overrides = global_stage_overrides(config)

    def _spec(self, repo_id: str) -> RepoSpec:
        if repo_id == COMMON_SCOPE:
            raise ConfigError(f"Repository id {COMMON_SCOPE!r} is reserved for shared scriptlets")
        spec = self._specs.get(repo_id)
        if spec is None:
            spec = self._specs[repo_id] = RepoSpec.from_config(self.config, repo_id)
        return spec

    def _around(self, scope: str, keys: List[FragmentKey], *, pre: bool, packager_first: bool) -> None:
        factory = FragmentKey.pre if pre else FragmentKey.post
        layered = [factory(scope, self.os_family)]
        if self.packager:
            layered.append(factory(scope, self.os_family, self.packager))
        if packager_first:
            layered.reverse()
        keys.extend(layered)

    def plan(self, ordered_repos: Sequence[str]) -> List[FragmentKey]:
        """Every scriptlet key consulted for ``ordered_repos``, in inclusion order."""

        keys: List[FragmentKey] = []
        # common pre: package manager scriptlet precedes the generic one
        self._around(COMMON_SCOPE, keys, pre=True, packager_first=True)
        for repo_id in ordered_repos:
            spec = self._spec(repo_id)
            self._around(repo_id, keys, pre=True, packager_first=False)
            for stage in enabled_stages(spec, self.targets, self._global_overrides):
                keys.append(FragmentKey.for_stage(repo_id, self.os_family, stage))
            self._around(repo_id, keys, pre=False, packager_first=True)
        self._around(COMMON_SCOPE, keys, pre=False, packager_first=False)
        return keys

    def compose(self, ordered_repos: Sequence[str]) -> ComposedScript:
        if not self.packager:
            logger.info("No package manager configured; package manager scriptlets are not consulted")
        script = ComposedScript(tuple(self.library.lookup(key) for key in self.plan(ordered_repos)))
        logger.info(
            "Composed script for %d repositories from %d scriptlets (%d not loaded)",
            len(ordered_repos),
            len(script.loaded),
            len(script.missing),
        )
        return script


def compose(
    ordered_repos: Sequence[str],
    config: ConfigStore,
    targets: TargetList = DEFAULT_TARGETS,
    *,
    library: ScriptletLibrary,
    os_family: str,
    packager: Optional[str] = None,
) -> ComposedScript:
    return ScriptComposer(config, library, os_family, packager=packager, targets=targets).compose(ordered_repos)
