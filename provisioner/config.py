from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml

from .constants import REPOS_PREFIX
from .utils import dump_json, ensure_directory

_DOCUMENT_SUFFIXES = {".yaml", ".yml", ".json"}
_TRUE_VALUES = {"Y", "YES", "TRUE", "1"}
_FALSE_VALUES = {"N", "NO", "FALSE", "0"}


class ConfigError(RuntimeError):
    """Raised when the configuration store cannot be parsed, queried or persisted."""


def parse_flag(raw: Optional[str], *, key: str, default: bool) -> bool:
    """Interpret a ``Y``/``N`` style configuration value."""

    if raw is None or not raw.strip():
        return default
    value = raw.strip().upper()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(f"Expected Y or N for {key}, got {raw!r}")


def _parse_properties(lines: Iterable[str]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for line in lines:
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, _, value = stripped.partition("=")
        key = key.strip()
        if key:
            values[key] = value.strip()
    return values


def _line_key(line: str) -> Optional[str]:
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    return stripped.partition("=")[0].strip()


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "Y" if value else "N"
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ",".join(_scalar(item) for item in value)
    return str(value)


def _leaves(data: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    leaves: Dict[str, Any] = {}
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            leaves.update(_leaves(value, name + "."))
        else:
            leaves[name] = value
    return leaves


def _unflatten(values: Mapping[str, Any]) -> Dict[str, Any]:
    root: Dict[str, Any] = {}
    for key, value in values.items():
        parts = key.split(".")
        node = root
        for part in parts[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise ConfigError(f"Key {key} conflicts with a value stored at a shorter key")
            node = child
        if isinstance(node.get(parts[-1]), dict):
            raise ConfigError(f"Key {key} conflicts with nested keys below it")
        node[parts[-1]] = value
    return root


@dataclass
class ConfigStore:
    """String-keyed, string-valued configuration backed by a properties file.

    YAML and JSON documents are accepted as well: nested mappings are
    flattened into dotted keys on load and nested again on write-back.
    """

    path: Optional[Path] = None
    _cache: Optional[Dict[str, str]] = None
    _lines: List[str] = field(default_factory=list)
    _typed: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str | Path) -> "ConfigStore":
        return cls(path=Path(path))

    @classmethod
    def from_text(cls, text: str) -> "ConfigStore":
        lines = text.splitlines()
        return cls(path=None, _cache=_parse_properties(lines), _lines=lines)

    @property
    def is_document(self) -> bool:
        return self.path is not None and self.path.suffix.lower() in _DOCUMENT_SUFFIXES

    def _load(self) -> Dict[str, str]:
        if self._cache is not None:
            return self._cache

        if self.path is None or not self.path.exists():
            self._lines = []
            self._cache = {}
            return self._cache

        try:
            raw_text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigError(f"Cannot read configuration {self.path}: {exc}") from exc

        if self.is_document:
            try:
                raw_data = yaml.safe_load(raw_text)
            except yaml.YAMLError as exc:
                raise ConfigError(f"Cannot parse configuration {self.path}: {exc}") from exc
            if raw_data is None:
                raw_data = {}
            if not isinstance(raw_data, dict):
                raise ConfigError(f"Configuration {self.path} must contain a top-level mapping")
            self._lines = []
            self._typed = _leaves(raw_data)
            self._cache = {key: _scalar(value) for key, value in self._typed.items()}
        else:
            self._lines = raw_text.splitlines()
            self._cache = _parse_properties(self._lines)
        return self._cache

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._load().get(key, default)

    def flag(self, key: str, default: bool = False) -> bool:
        return parse_flag(self.get(key), key=key, default=default)

    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key`` and persist the change when file backed."""

        values = self._load()
        if values.get(key) == value:
            return
        previous_values = dict(values)
        previous_lines = list(self._lines)
        values[key] = value
        if not self.is_document:
            self._replace_line(key, value)
        if self.path is not None:
            try:
                self.save()
            except ConfigError:
                self._cache = previous_values
                self._lines = previous_lines
                raise

    def _replace_line(self, key: str, value: str) -> None:
        replaced = False
        for index, line in enumerate(self._lines):
            if _line_key(line) == key:
                self._lines[index] = f"{key}={value}"
                replaced = True
        if not replaced:
            self._lines.append(f"{key}={value}")

    def save(self) -> None:
        if self.path is None:
            raise ConfigError("In-memory configuration has no backing file")
        values = self._load()
        try:
            ensure_directory(self.path.parent)
            if not self.is_document:
                self.path.write_text("\n".join(self._lines) + "\n", encoding="utf-8")
                return
            document = _unflatten(self._document_values(values))
            if self.path.suffix.lower() == ".json":
                dump_json(self.path, document, sort_keys=False)
            else:
                self.path.write_text(
                    yaml.safe_dump(document, sort_keys=False, default_flow_style=False),
                    encoding="utf-8",
                )
        except OSError as exc:
            raise ConfigError(f"Cannot write configuration {self.path}: {exc}") from exc

    def _document_values(self, values: Mapping[str, str]) -> Dict[str, Any]:
        # unchanged keys keep the type they were loaded with
        return {
            key: self._typed[key] if key in self._typed and _scalar(self._typed[key]) == value else value
            for key, value in values.items()
        }

    def keys(self) -> List[str]:
        return list(self._load())

    def items(self) -> List[Tuple[str, str]]:
        return list(self._load().items())

    def repo_ids(self) -> List[str]:
        """Repository identifiers declared under ``development.repos``, in file order."""

        repo_ids: List[str] = []
        for key in self._load():
            if not key.startswith(REPOS_PREFIX):
                continue
            repo_id, sep, _ = key[len(REPOS_PREFIX):].partition(".")
            if sep and repo_id and repo_id not in repo_ids:
                repo_ids.append(repo_id)
        return repo_ids

    def __len__(self) -> int:
        return len(self._load())

    def __contains__(self, key: str) -> bool:
        return key in self._load()
