"""
Configuration for the indexer container entrypoint.

Loads configuration from environment variables, optionally layered over a
YAML file named by ENTRYPOINT_CONFIG. The result is a single validated,
immutable EntrypointConfig built once at process entry.
"""
import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from indexer_entrypoint.errors import ConfigError
from indexer_entrypoint.schema import DirectorySpec, OwnershipScope, RuntimeIdentity, SyncSpec


DEFAULT_REFERENCE_DIR = "/app/blk-dir"
DEFAULT_FIX_PERMS_DIRS = ("/app", "/app/index-dir", "/app/rocksdb")
DEFAULT_CREATE_DIRS = ("/app/index-dir", "/app/rocksdb")

# The sync source is this subdirectory of the reference directory.
# Neither end of the sync pair is exposed through the environment.
SYNC_SUBDIR = "index"
SYNC_DESTINATION = "/app/index-dir"

FALSE_FLAGS = {"0", "false", "no", "off"}

# Environment variable -> config field
ENV_FIELDS = {
    "AUTO_RUN_AS_FROM_BLK_DIR": "auto_detect",
    "APP_UID": "app_uid",
    "APP_GID": "app_gid",
    "RUN_AS": "run_as",
    "BLK_DIR": "reference_dir",
    "FIX_PERMS_DIRS": "fix_perms_dirs",
    "EXCLUDE_DIRS": "exclude_dirs",
    "CREATE_DIRS": "create_dirs",
    "ENTRYPOINT_SYNC_BACKEND": "sync_backend",
    "ENTRYPOINT_LAUNCH_MODE": "launch_mode",
    "ENTRYPOINT_LOG_LEVEL": "log_level",
}

# YAML accepts the lowercase variable name or the field name
YAML_KEYS = {name.lower(): field for name, field in ENV_FIELDS.items()}
YAML_KEYS.update({field: field for field in ENV_FIELDS.values()})


def parse_flag(value: Any) -> bool:
    """Any non-empty value enables a flag, except the usual false spellings."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    text = str(value).strip().lower()
    return bool(text) and text not in FALSE_FLAGS


def split_paths(value: Any) -> Tuple[str, ...]:
    """Split a whitespace separated path list; lists pass through."""
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(value.split())
    return tuple(str(item) for item in value)


class EntrypointConfig(BaseModel):
    """Validated entrypoint configuration."""
    model_config = ConfigDict(frozen=True, extra='forbid')

    auto_detect: bool = False
    app_uid: Optional[int] = Field(None, ge=0, description="Explicit UID override")
    app_gid: Optional[int] = Field(None, ge=0, description="Explicit GID override")
    run_as: Optional[RuntimeIdentity] = Field(None, description="Explicit uid:gid pair, beats app_uid/app_gid")
    reference_dir: str = DEFAULT_REFERENCE_DIR
    fix_perms_dirs: Tuple[str, ...] = DEFAULT_FIX_PERMS_DIRS
    exclude_dirs: Optional[Tuple[str, ...]] = Field(None, description="Defaults to the reference directory")
    create_dirs: Tuple[str, ...] = DEFAULT_CREATE_DIRS
    sync_source: Optional[str] = Field(None, description="Defaults to <reference_dir>/index")
    sync_destination: str = SYNC_DESTINATION
    sync_backend: Literal['auto', 'rsync', 'python'] = 'auto'
    launch_mode: Literal['exec', 'spawn'] = 'exec'
    log_level: str = "INFO"

    @field_validator('auto_detect', mode='before')
    @classmethod
    def _flag(cls, value):
        return parse_flag(value)

    @field_validator('fix_perms_dirs', 'create_dirs', mode='before')
    @classmethod
    def _paths(cls, value):
        return split_paths(value)

    @field_validator('exclude_dirs', mode='before')
    @classmethod
    def _optional_paths(cls, value):
        if value is None:
            return None
        return split_paths(value)

    @field_validator('run_as', mode='before')
    @classmethod
    def _identity(cls, value):
        if isinstance(value, str):
            return RuntimeIdentity.parse(value)
        return value

    @field_validator('log_level')
    @classmethod
    def _level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'EntrypointConfig':
        """
        Build configuration from the environment.

        Empty values count as unset, like ${VAR:-default} in a shell.

        Args:
            environ: Mapping to read instead of os.environ (for tests)

        Returns:
            EntrypointConfig instance

        Raises:
            ConfigError: If any value fails validation
        """
        env = os.environ if environ is None else environ

        data: Dict[str, Any] = {}
        config_file = env.get("ENTRYPOINT_CONFIG")
        if config_file:
            data.update(load_yaml_config(Path(config_file)))

        for name, field in ENV_FIELDS.items():
            value = env.get(name)
            if value:
                data[field] = value

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid entrypoint configuration: {e}") from e

    @property
    def explicit_uid(self) -> Optional[int]:
        if self.run_as is not None:
            return self.run_as.uid
        return self.app_uid

    @property
    def explicit_gid(self) -> Optional[int]:
        if self.run_as is not None:
            return self.run_as.gid
        return self.app_gid

    @property
    def directory_spec(self) -> DirectorySpec:
        return DirectorySpec(paths=self.create_dirs)

    @property
    def ownership_scope(self) -> OwnershipScope:
        excluded = self.exclude_dirs
        if excluded is None:
            excluded = (self.reference_dir,)
        return OwnershipScope(roots=self.fix_perms_dirs, excluded=excluded)

    @property
    def sync_spec(self) -> SyncSpec:
        source = self.sync_source
        if source is None:
            source = os.path.join(self.reference_dir, SYNC_SUBDIR)
        return SyncSpec(source=source, destination=self.sync_destination)

    def to_yaml(self) -> str:
        """Render the effective configuration for --print-config."""
        data = self.model_dump(mode='json')
        data['run_as'] = str(self.run_as) if self.run_as else None
        data['exclude_dirs'] = list(self.ownership_scope.excluded)
        data['sync_source'] = self.sync_spec.source
        return yaml.safe_dump(data, sort_keys=False)


def load_yaml_config(yaml_path: Path) -> Dict[str, Any]:
    """
    Load config defaults from a YAML file.

    Keys are the lowercase environment variable names (app_uid, fix_perms_dirs,
    auto_run_as_from_blk_dir, ...) or the matching EntrypointConfig field names.

    Raises:
        ConfigError: If the file is missing, unparsable, or not a mapping
    """
    if not yaml_path.exists():
        raise ConfigError(f"Entrypoint config not found: {yaml_path}")

    try:
        with open(yaml_path, 'r') as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {yaml_path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Invalid entrypoint config in {yaml_path}: must be a YAML dict")

    data = {}
    for key, value in raw.items():
        field = YAML_KEYS.get(str(key).lower())
        if field is None:
            raise ConfigError(f"Unknown key in {yaml_path}: {key}")
        data[field] = value
    return data


def get_config() -> EntrypointConfig:
    """Get entrypoint configuration from the process environment."""
    return EntrypointConfig.from_env()
