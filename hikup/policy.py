from __future__ import annotations

import json
import logging
import os

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .runtime import ReadWriteLock

log = logging.getLogger("hikup.policy")

WILDCARD = "*"


class ConfigError(Exception):
    """A policy file could not be loaded. The active policy is unchanged."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class UnsupportedFormat(ConfigError):
    pass


class MalformedConfig(ConfigError):
    pass


class PolicyConfig(BaseModel):
    """Which containers are eligible for update."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    include_containers: tuple[str, ...] = Field((), description="Names to update; '*' matches every container")
    exclude_containers: tuple[str, ...] = Field((), description="Names never updated through the wildcard")

    @field_validator("include_containers", "exclude_containers", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return () if v is None else v

    @property
    def is_empty(self) -> bool:
        return not self.include_containers and not self.exclude_containers


def _load_json(path: str, text: str) -> object:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedConfig(path, f"invalid JSON: {e}") from e


def _load_yaml(path: str, text: str) -> object:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MalformedConfig(path, f"invalid YAML: {e}") from e


PARSERS = {".json": _load_json, ".yaml": _load_yaml, ".yml": _load_yaml}


def parse_policy_file(path: str) -> PolicyConfig:
    """Read and validate a policy file without touching any store."""
    ext = os.path.splitext(path)[1].lower()
    parser = PARSERS.get(ext)
    if parser is None:
        raise UnsupportedFormat(path, f"unsupported config file format: {ext or '(none)'}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise ConfigError(path, f"error reading config file: {e}") from e

    data = parser(path, text)
    if data is None:
        # An empty YAML document is an empty policy.
        data = {}
    if not isinstance(data, dict):
        raise MalformedConfig(path, f"expected a mapping at top level, got {type(data).__name__}")

    try:
        return PolicyConfig.model_validate(data)
    except ValidationError as e:
        raise MalformedConfig(path, f"invalid policy: {e.error_count()} error(s): {e.errors()[0]['msg']}") from e


class PolicyStore:
    """Holds the active PolicyConfig; swapped wholesale on reload."""

    def __init__(self, initial: PolicyConfig | None = None):
        self._lock = ReadWriteLock()
        self._policy = initial if initial is not None else PolicyConfig()

    def snapshot(self) -> PolicyConfig:
        with self._lock.read():
            return self._policy

    def replace(self, policy: PolicyConfig) -> None:
        with self._lock.write():
            self._policy = policy

    def load(self, path: str) -> PolicyConfig:
        """Parse `path` and make it the active policy.

        Raises ConfigError (or a subclass) and leaves the current policy in
        place when the file cannot be read or parsed.
        """
        policy = parse_policy_file(path)
        self.replace(policy)
        log.info(
            "Configuration reloaded from %s (include=%d, exclude=%d)",
            path,
            len(policy.include_containers),
            len(policy.exclude_containers),
        )
        return policy
