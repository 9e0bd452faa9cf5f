"""
Tier registry and configuration loading.

Each tier resolves to an immutable :class:`TierConfig` that is passed
explicitly through every call. Values are layered:

1. Built-in per-tier defaults
2. YAML config file (``tiers.<tier>.<environment>`` sections)
3. Environment variables (``TIER_SYNC_<TIER>_<ENV>_<KEY>``)

Naming override rules for relationship resolution are loaded from the same
YAML file (``naming.rules``).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from tier_sync.errors import ConfigurationError

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    """The three independently configured tenant contexts."""
    ADMIN = "admin"
    OPERATOR = "operator"
    MEMBER = "member"


class Environment(str, Enum):
    """Deployment environments kept consistent with each other."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection parameters for a tier's PostgreSQL database."""
    host: str = "localhost"
    port: int = 5432
    dbname: str = "postgres"
    user: str = "postgres"
    password: str = ""
    connect_timeout: int = 10
    statement_timeout_ms: int = 30000
    excluded_schemas: Tuple[str, ...] = ()

    @property
    def connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``psycopg.connect``; libpq quoting is left to psycopg."""
        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "dbname": self.dbname,
            "user": self.user,
            "connect_timeout": self.connect_timeout,
        }
        if self.password:
            kwargs["password"] = self.password
        return kwargs


@dataclass(frozen=True)
class EngineConfig:
    """Endpoint and credential for a tier's GraphQL metadata engine."""
    endpoint: str = "http://localhost:8080"
    admin_secret: str = ""
    source_name: str = "default"
    database_url_env: str = "HASURA_GRAPHQL_DATABASE_URL"
    timeout: float = 30.0


@dataclass(frozen=True)
class ContainerConfig:
    """Docker compose project backing a tier in development."""
    compose_dir: Path = Path(".")
    service: str = ""
    volume: str = ""
    timeout: int = 300


@dataclass(frozen=True)
class TierConfig:
    """Immutable, fully resolved configuration for one (tier, environment)."""
    tier: Tier
    environment: Environment
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    containers: ContainerConfig = field(default_factory=ContainerConfig)

    @property
    def label(self) -> str:
        return f"{self.tier.value}/{self.environment.value}"

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION


@dataclass(frozen=True)
class NamingRule:
    """
    Explicit relationship name for matching foreign keys.

    Patterns are shell-style globs matched case-insensitively against the
    bare target table name (or ``schema.table`` when the pattern contains a
    dot) and against the source column. Names may use ``{base}``, ``{source}`` and ``{target}``.
    """
    target_table: str = "*"
    source_column: str = "*"
    object_name: Optional[str] = None
    array_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> NamingRule:
        if not data.get("object_name") and not data.get("array_name"):
            raise ConfigurationError(f"Naming rule needs object_name or array_name: {data}")
        return cls(
            target_table=data.get("target_table", "*"),
            source_column=data.get("source_column", "*"),
            object_name=data.get("object_name"),
            array_name=data.get("array_name"),
        )


DEFAULT_NAMING_RULES: Tuple[NamingRule, ...] = (
    NamingRule(target_table="*compan*", object_name="operator_company"),
    NamingRule(target_table="*users", source_column="created_by_id", object_name="created_by_user"),
    NamingRule(target_table="*users", source_column="updated_by_id", object_name="updated_by_user"),
    NamingRule(target_table="*users", source_column="assigned_to_id", object_name="assigned_to_user"),
    NamingRule(target_table="*users", source_column="*_by_id", object_name="{base}_user"),
)


# Per-tier defaults: (db port, engine port, db name/user, compose service, volume)
_TIER_DEFAULTS: Dict[Tier, Dict[str, Any]] = {
    Tier.ADMIN: {
        "db_port": 7101,
        "engine_port": 8101,
        "service": "admin-graphql-server",
        "volume": "admin_graphql_metadata",
    },
    Tier.OPERATOR: {
        "db_port": 7102,
        "engine_port": 8102,
        "service": "operator-graphql-server",
        "volume": "operator_graphql_metadata",
    },
    Tier.MEMBER: {
        "db_port": 7103,
        "engine_port": 8103,
        "service": "member-graphql-server",
        "volume": "member_graphql_metadata",
    },
}

ENV_PREFIX = "TIER_SYNC"

# env suffix -> (section, key, caster)
_ENV_KEYS = {
    "DB_HOST": ("database", "host", str),
    "DB_PORT": ("database", "port", int),
    "DB_NAME": ("database", "dbname", str),
    "DB_USER": ("database", "user", str),
    "DB_PASSWORD": ("database", "password", str),
    "ENDPOINT": ("engine", "endpoint", str),
    "ADMIN_SECRET": ("engine", "admin_secret", str),
    "SOURCE": ("engine", "source_name", str),
    "COMPOSE_DIR": ("containers", "compose_dir", Path),
}


def parse_tier(value: str) -> Tier:
    try:
        return Tier(value.lower())
    except ValueError:
        valid = ", ".join(t.value for t in Tier)
        raise ConfigurationError(f"Invalid tier: {value}. Must be one of {valid}") from None


def parse_environment(value: str) -> Environment:
    try:
        return Environment(value.lower())
    except ValueError:
        valid = ", ".join(e.value for e in Environment)
        raise ConfigurationError(f"Invalid environment: {value}. Must be one of {valid}") from None


def default_tier_config(tier: Tier, environment: Environment) -> TierConfig:
    """Built-in registry entry for a tier."""
    defaults = _TIER_DEFAULTS[tier]

    if environment == Environment.DEVELOPMENT:
        endpoint = f"http://localhost:{defaults['engine_port']}"
    else:
        endpoint = f"https://{tier.value}-graphql-api.hasura.app"

    return TierConfig(
        tier=tier,
        environment=environment,
        database=DatabaseConfig(
            host="localhost",
            port=defaults["db_port"],
            dbname=tier.value,
            user=tier.value,
        ),
        engine=EngineConfig(
            endpoint=endpoint,
            database_url_env=f"{tier.value.upper()}_DATABASE_URL",
        ),
        containers=ContainerConfig(
            compose_dir=Path(f"../{tier.value}-graphql-api"),
            service=defaults["service"],
            volume=defaults["volume"],
        ),
    )


def load_config_file(path: Optional[Path]) -> Dict[str, Any]:
    """Load the YAML config file; a missing path yields an empty config."""
    if path is None:
        return {}

    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    with open(path, "r") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Malformed config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    logger.debug(f"Loaded config file {path}")
    return data


def _apply_section(config: TierConfig, section: Mapping[str, Any]) -> TierConfig:
    """Overlay a ``{database, engine, containers}`` mapping onto ``config``."""
    database = config.database
    engine = config.engine
    containers = config.containers

    if section.get("database"):
        values = dict(section["database"])
        if "excluded_schemas" in values:
            values["excluded_schemas"] = tuple(values["excluded_schemas"])
        database = replace(database, **values)
    if section.get("engine"):
        engine = replace(engine, **section["engine"])
    if section.get("containers"):
        values = dict(section["containers"])
        if "compose_dir" in values:
            values["compose_dir"] = Path(values["compose_dir"])
        containers = replace(containers, **values)

    return replace(config, database=database, engine=engine, containers=containers)


def _apply_env(config: TierConfig, env: Mapping[str, str]) -> TierConfig:
    prefix = f"{ENV_PREFIX}_{config.tier.value.upper()}_{config.environment.value.upper()}_"
    overrides: Dict[str, Dict[str, Any]] = {}

    for suffix, (section, key, caster) in _ENV_KEYS.items():
        value = env.get(prefix + suffix)
        if value is None:
            continue
        try:
            overrides.setdefault(section, {})[key] = caster(value)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {prefix + suffix}: {value}") from e

    if overrides:
        logger.debug(f"Applied {sum(len(v) for v in overrides.values())} environment overrides")
        return _apply_section(config, overrides)
    return config


def load_tier_config(
    tier: str,
    environment: str,
    config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    file_data: Optional[Dict[str, Any]] = None,
) -> TierConfig:
    """
    Resolve the configuration for one (tier, environment).

    Args:
        tier: Tier name (admin, operator, member)
        environment: Environment name (development, production)
        config_path: Optional YAML config file
        env: Environment mapping (defaults to ``os.environ``)
        file_data: Pre-loaded config file contents (takes precedence over config_path)

    Returns:
        Immutable TierConfig
    """
    tier_enum = parse_tier(tier)
    env_enum = parse_environment(environment)
    env = os.environ if env is None else env
    data = file_data if file_data is not None else load_config_file(config_path)

    config = default_tier_config(tier_enum, env_enum)

    section = ((data.get("tiers") or {}).get(tier_enum.value) or {}).get(env_enum.value) or {}
    try:
        config = _apply_section(config, section)
    except TypeError as e:
        raise ConfigurationError(f"Unknown key in config for {tier_enum.value}/{env_enum.value}: {e}") from e

    return _apply_env(config, env)


def load_naming_rules(
    config_path: Optional[Path] = None,
    file_data: Optional[Dict[str, Any]] = None,
) -> List[NamingRule]:
    """
    Load naming override rules.

    Configured rules are consulted before the built-in defaults unless the
    file sets ``naming.replace_defaults: true``.
    """
    data = file_data if file_data is not None else load_config_file(config_path)
    naming = data.get("naming") or {}
    rules = [NamingRule.from_dict(r) for r in naming.get("rules") or []]

    if naming.get("replace_defaults"):
        return rules
    return rules + list(DEFAULT_NAMING_RULES)
