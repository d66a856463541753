from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple

from .constants import SCRIPTLET_SUFFIX
from .models import Stage

logger = logging.getLogger(__name__)


class Position(Enum):
    PRE = "pre"
    STAGE = "stage"
    POST = "post"


@dataclass(frozen=True)
class FragmentKey:
    """Layered address of a scriptlet: scope, OS family, package manager, position."""

    scope: str
    os_family: str
    position: Position
    packager: Optional[str] = None
    stage: Optional[Stage] = None

    @classmethod
    def pre(cls, scope: str, os_family: str, packager: Optional[str] = None) -> "FragmentKey":
        return cls(scope=scope, os_family=os_family, position=Position.PRE, packager=packager)

    @classmethod
    def post(cls, scope: str, os_family: str, packager: Optional[str] = None) -> "FragmentKey":
        return cls(scope=scope, os_family=os_family, position=Position.POST, packager=packager)

    @classmethod
    def for_stage(cls, scope: str, os_family: str, stage: Stage) -> "FragmentKey":
        return cls(scope=scope, os_family=os_family, position=Position.STAGE, stage=stage)

    @property
    def segments(self) -> Tuple[str, ...]:
        parts = [self.scope, self.os_family]
        if self.packager:
            parts.append(self.packager)
        if self.position is Position.STAGE:
            if self.stage is None:
                raise ValueError("Stage scriptlets need a stage")
            parts.append(self.stage.value)
        else:
            parts.append(self.position.value)
        return tuple(parts)

    def relative_path(self, suffix: str = SCRIPTLET_SUFFIX) -> str:
        return "/".join(self.segments) + suffix


@dataclass(frozen=True)
class FragmentLookup:
    """Outcome of resolving one key: either its content or the reason it is absent."""

    key: FragmentKey
    path: str
    content: Optional[str] = None
    reason: Optional[str] = None

    @property
    def loaded(self) -> bool:
        return self.content is not None


@dataclass
class ScriptletLibrary:
    """Directory tree of scriptlets addressed by :class:`FragmentKey`."""

    root: Path
    suffix: str = SCRIPTLET_SUFFIX
    _cache: Dict[FragmentKey, FragmentLookup] = field(default_factory=dict)

    @classmethod
    def from_directory(cls, root: str | Path, suffix: str = SCRIPTLET_SUFFIX) -> "ScriptletLibrary":
        return cls(root=Path(root), suffix=suffix)

    def path_for(self, key: FragmentKey) -> Path:
        return self.root.joinpath(*key.segments[:-1], key.segments[-1] + self.suffix)

    def lookup(self, key: FragmentKey) -> FragmentLookup:
        """Read the scriptlet for ``key``; absence is reported, never raised."""

        cached = self._cache.get(key)
        if cached is not None:
            return cached

        relative = key.relative_path(self.suffix)
        try:
            content = self.path_for(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            result = FragmentLookup(key, relative, reason="not found")
        except UnicodeDecodeError:
            result = FragmentLookup(key, relative, reason="not valid UTF-8")
        except OSError as exc:
            result = FragmentLookup(key, relative, reason=exc.strerror or str(exc))
        else:
            result = FragmentLookup(key, relative, content=content)

        if result.loaded:
            logger.debug("Loaded scriptlet %s", relative)
        else:
            logger.debug("Scriptlet %s not loaded: %s", relative, result.reason)
        self._cache[key] = result
        return result
