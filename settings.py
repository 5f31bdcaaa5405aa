import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

# env files are looked up next to this module
_PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
_DEFAULT_OUTPUT_DIR = os.path.join("storage", "app", "recommendation")

_TRUE_VALUES = ("1", "true", "yes", "y", "on")
_FALSE_VALUES = ("0", "false", "no", "n", "off")


@dataclass
class EngineConfig:
    session_timeout_seconds: float = 30 * 60
    state_db_path: str = os.path.join(_DEFAULT_OUTPUT_DIR, "engine_state.duckdb")
    autosave: bool = True
    default_limit: int = 10


@dataclass
class CatalogConfig:
    db_url: str | None = None
    fallback: str = "none"  # "hash" enables the degenerate category mode


@dataclass
class RedisConfig:
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: str | None = None
    ttl_seconds: int = 3600


@dataclass
class Config:
    engine: EngineConfig = field(default_factory=EngineConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    output_dir: str = _DEFAULT_OUTPUT_DIR


def _env(key: str, default: str = "") -> str:
    """Engine setting as a string, unquoted; ``default`` when unset or blank."""
    val = os.getenv(key)
    if val is None:
        return default
    val = val.strip().strip('"').strip("'")
    return val if val else default


def _env_optional(key: str) -> str | None:
    """Connection strings and secrets: None when unset or blank."""
    return _env(key) or None


def _env_number(key: str, default, cast):
    raw = _env(key)
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}") from None


def _env_bool(key: str, default: bool = True) -> bool:
    """Feature switches such as ENGINE_AUTOSAVE; unrecognised values keep the default."""
    val = _env(key).lower()
    if val in _TRUE_VALUES:
        return True
    if val in _FALSE_VALUES:
        return False
    return default


def _load_env_files() -> None:
    """Load .env, else env.production, from the project root without overriding real env vars."""
    for name in (".env", "env.production"):
        path = os.path.join(_PROJECT_ROOT, name)
        if os.path.exists(path):
            load_dotenv(path, override=False)
            return
    load_dotenv(override=False)


def load_config() -> Config:
    """Build engine, catalog and cache settings from the environment"""
    _load_env_files()

    output_dir = _env("RECO_OUTPUT_DIR", _DEFAULT_OUTPUT_DIR)

    engine_config = EngineConfig(
        session_timeout_seconds=_env_number("SESSION_TIMEOUT_SECONDS", 30 * 60, float),
        state_db_path=_env("ENGINE_STATE_DB", os.path.join(output_dir, "engine_state.duckdb")),
        autosave=_env_bool("ENGINE_AUTOSAVE", default=True),
        default_limit=_env_number("RECO_DEFAULT_LIMIT", 10, int),
    )

    catalog_config = CatalogConfig(
        db_url=_env_optional("CATALOG_DB_URL"),
        fallback=_env("CATALOG_FALLBACK", "none").lower(),
    )

    redis_config = RedisConfig(
        host=_env("REDIS_HOST", "localhost"),
        port=_env_number("REDIS_PORT", 6379, int),
        db=_env_number("REDIS_DB", 0, int),
        password=_env_optional("REDIS_PASSWORD"),
        ttl_seconds=_env_number("REDIS_TTL_SECONDS", 3600, int),
    )

    return Config(
        engine=engine_config,
        catalog=catalog_config,
        redis=redis_config,
        output_dir=output_dir,
    )
