"""Dependency ordering and provisioning script composition for multi-repository environments."""

from .composer import ComposedScript, ScriptComposer, compose
from .config import ConfigStore
from .models import DEFAULT_TARGETS, RepoSpec, Stage, TargetList
from .resolver import DependencyGraph, resolve
from .scriptlets import ScriptletLibrary

__all__ = [
    "ComposedScript",
    "ConfigStore",
    "DEFAULT_TARGETS",
    "DependencyGraph",
    "RepoSpec",
    "ScriptComposer",
    "ScriptletLibrary",
    "Stage",
    "TargetList",
    "compose",
    "resolve",
]
