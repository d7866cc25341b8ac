"""Configuration loading for diskuto-sync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft7Validator

from .types import Full, Latest, ServerInfo, SyncMode, SyncTask, UserRef

DEFAULT_CONFIG_PATH = "diskuto-sync.yaml"


class ConfigError(ValueError):
    """The configuration file is missing or invalid."""


@dataclass
class ServerConfig:
    url: str
    dest: bool = False  # Items are only copied to servers marked as destinations


@dataclass
class UserSyncConfig:
    """How to sync one configured user."""

    mode: str = "latest"  # "latest" or "full"
    count: int = 50  # Only used by "latest"
    follows: bool = False  # Also sync everyone this user follows
    backfill_attachments: bool = False  # Only used by "full"

    def to_mode(self) -> SyncMode:
        if self.mode == "full":
            return Full(backfill_attachments=self.backfill_attachments)
        return Latest(count=self.count)


@dataclass
class UserConfig:
    id: str
    sync: UserSyncConfig = field(default_factory=UserSyncConfig)

    def to_task(self, name: str) -> SyncTask:
        """Build the SyncTask for this user, labelled with its config name."""
        return SyncTask(
            user=UserRef(self.id, known_name=name),
            mode=self.sync.to_mode(),
            follows=self.sync.follows,
        )


@dataclass
class EngineConfig:
    parallel: int = 5
    copy_files: bool = True
    timeout_seconds: float = 30.0
    retry_max_attempts: int = 3


@dataclass
class Config:
    servers: dict[str, ServerConfig] = field(default_factory=dict)
    users: dict[str, UserConfig] = field(default_factory=dict)
    engine: EngineConfig = field(default_factory=EngineConfig)

    def server_infos(self) -> list[ServerInfo]:
        """Servers in file order, named by their config key."""
        return [
            ServerInfo(url=server.url, name=name, is_dest=server.dest)
            for name, server in self.servers.items()
        ]

    def tasks(self) -> list[SyncTask]:
        """One SyncTask per configured user, in file order."""
        return [user.to_task(name) for name, user in self.users.items()]


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with DISKUTO_SYNC_ prefix."""
    return os.environ.get(f"DISKUTO_SYNC_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    try:
        if parallel := _get_env("PARALLEL"):
            config.engine.parallel = int(parallel)
        if timeout := _get_env("TIMEOUT"):
            config.engine.timeout_seconds = float(timeout)
        if retries := _get_env("RETRY_MAX_ATTEMPTS"):
            config.engine.retry_max_attempts = int(retries)
    except ValueError as e:
        raise ConfigError(f"Invalid environment override: {e}") from e

    if copy_files := _get_env("COPY_FILES"):
        config.engine.copy_files = copy_files.lower() in ("true", "1", "yes")

    return config


# Base58 encoding of a 32 byte public key
USER_ID_PATTERN = "^[1-9A-HJ-NP-Za-km-z]{32,44}$"

_POSITIVE_INT = {"type": "integer", "minimum": 1}

CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "servers": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "additionalProperties": False,
                "required": ["url"],
                "properties": {
                    "url": {"type": "string", "pattern": "^https?://[^/?#]+"},
                    "dest": {"type": "boolean"},
                },
            },
        },
        "users": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "additionalProperties": False,
                "required": ["id"],
                "properties": {
                    "id": {"type": "string", "pattern": USER_ID_PATTERN},
                    "sync": {
                        "type": "object",
                        "properties": {"mode": {"enum": ["latest", "full"]}},
                        "if": {
                            "properties": {"mode": {"const": "full"}},
                            "required": ["mode"],
                        },
                        "then": {
                            "additionalProperties": False,
                            "properties": {
                                "mode": {},
                                "follows": {"type": "boolean"},
                                "backfillAttachments": {"type": "boolean"},
                            },
                        },
                        "else": {
                            "additionalProperties": False,
                            "properties": {
                                "mode": {},
                                "count": _POSITIVE_INT,
                                "follows": {"type": "boolean"},
                            },
                        },
                    },
                },
            },
        },
        "engine": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "parallel": _POSITIVE_INT,
                "copy_files": {"type": "boolean"},
                "timeout_seconds": {"type": "number", "exclusiveMinimum": 0},
                "retry_max_attempts": _POSITIVE_INT,
            },
        },
    },
}


def check_schema(data: Any, source: str | Path) -> None:
    """Validate a loaded config file against CONFIG_SCHEMA.

    Raises:
        ConfigError: Listing every schema violation with its path.
    """
    errors = sorted(
        Draft7Validator(CONFIG_SCHEMA).iter_errors(data),
        key=lambda e: [str(p) for p in e.path],
    )
    if not errors:
        return

    error_msgs = []
    for error in errors:
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        error_msgs.append(f"  - {path}: {error.message}")
    raise ConfigError(f"Invalid configuration in {source}:\n" + "\n".join(error_msgs))


def _parse_user_sync(data: dict) -> UserSyncConfig:
    defaults = UserSyncConfig()
    return UserSyncConfig(
        mode=data.get("mode", defaults.mode),
        count=data.get("count", defaults.count),
        follows=data.get("follows", defaults.follows),
        backfill_attachments=data.get("backfillAttachments", defaults.backfill_attachments),
    )


def _parse_engine(data: dict) -> EngineConfig:
    defaults = EngineConfig()
    return EngineConfig(
        parallel=data.get("parallel", defaults.parallel),
        copy_files=data.get("copy_files", defaults.copy_files),
        timeout_seconds=float(data.get("timeout_seconds", defaults.timeout_seconds)),
        retry_max_attempts=data.get("retry_max_attempts", defaults.retry_max_attempts),
    )


def validate_config(config: Config) -> None:
    """Check the invariants the sync engine relies on.

    Raises:
        ConfigError: If fewer than 2 servers or no destination are configured.
    """
    if len(config.servers) < 2:
        raise ConfigError(f"Must have at least 2 servers listed, found {len(config.servers)}")
    if not any(server.dest for server in config.servers.values()):
        raise ConfigError("Must have at least one destination server configured. (dest: true)")
    if config.engine.parallel < 1:
        raise ConfigError("engine.parallel must be at least 1")
    if config.engine.retry_max_attempts < 1:
        raise ConfigError("engine.retry_max_attempts must be at least 1")


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. Defaults to diskuto-sync.yaml.

    Returns:
        Loaded and validated Config object.

    Raises:
        ConfigError: If the file is missing, unparseable or invalid.
    """
    path = Path(config_path or DEFAULT_CONFIG_PATH)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e

    check_schema(data, path)

    config = Config(
        servers={
            str(name): ServerConfig(url=server["url"], dest=server.get("dest", False))
            for name, server in data.get("servers", {}).items()
        },
        users={
            str(name): UserConfig(id=user["id"], sync=_parse_user_sync(user.get("sync", {})))
            for name, user in data.get("users", {}).items()
        },
        engine=_parse_engine(data.get("engine", {})),
    )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    validate_config(config)
    return config
