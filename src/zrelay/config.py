"""Configuration handling for the zrelay gateway."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

from .utils import ThinkTagsMode

logger = logging.getLogger(__name__)

DEFAULT_UPSTREAM_URL = "https://chat.z.ai/api/chat/completions"
DEFAULT_ORIGIN_BASE = "https://chat.z.ai"
DEFAULT_MODEL_MAP = "GLM-4.5:0727-360B-API,GLM-4.5V:glm-4.5v"
DEFAULT_FE_VERSION = "prod-fe-1.0.70"
DEFAULT_API_KEY = "sk-your-key"
DEFAULT_UPSTREAM_TOKEN = ""


class ConfigError(ValueError):
    """Raised when a configuration value cannot be interpreted."""


@dataclass(frozen=True)
class Settings:
    """Immutable process configuration, built once at startup."""

    upstream_url: str = DEFAULT_UPSTREAM_URL
    api_key: str = DEFAULT_API_KEY
    upstream_token: str = DEFAULT_UPSTREAM_TOKEN
    host: str = "0.0.0.0"
    port: int = 8080
    model_map: Mapping[str, str] = field(
        default_factory=lambda: parse_model_map(DEFAULT_MODEL_MAP)
    )
    debug: bool = True
    default_stream: bool = True
    think_tags_mode: ThinkTagsMode = ThinkTagsMode.STRIP
    anon_token_enabled: bool = True
    origin_base: str = DEFAULT_ORIGIN_BASE
    fe_version: str = DEFAULT_FE_VERSION
    model_owner: str = "z.ai"
    credential_timeout: float = 10.0
    upstream_timeout: float = 60.0

    def model_names(self):
        return list(self.model_map)


def parse_model_map(raw: str) -> Mapping[str, str]:
    """
    Parse a ``display:upstream`` comma-separated list into a read-only mapping.

    Pairs without a colon or with an empty side are skipped. Only the first
    colon splits a pair, so upstream ids may themselves contain colons.
    """
    mapping: Dict[str, str] = {}
    for pair in raw.split(","):
        key, sep, value = pair.partition(":")
        key, value = key.strip(), value.strip()
        if not sep or not key or not value:
            if pair.strip():
                logger.warning(f"Ignoring malformed MODEL_MAP entry: {pair!r}")
            continue
        mapping[key] = value
    return MappingProxyType(mapping)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def _as_number(name: str, value: Any, kind):
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    if not config_path.is_file():
        return {}
    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error loading {config_path}: {str(e)}")
        return {}
    if not isinstance(data, dict):
        logger.error(f"Ignoring {config_path}: top level must be a mapping")
        return {}
    logger.info(f"Successfully loaded configuration from {config_path}")
    return {str(k).upper(): v for k, v in data.items()}


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    config_path: Optional[Path] = None,
    use_dotenv: bool = True,
) -> Settings:
    """
    Build the process Settings.

    Precedence, lowest first: built-in defaults, the YAML file named by
    ``ZRELAY_CONFIG`` (``./config.yaml`` by default), ``.env``, then the
    environment. Passing ``env`` explicitly skips ``.env`` and ``os.environ``.
    """
    if env is None:
        if use_dotenv:
            load_dotenv()
        env = os.environ

    if config_path is None:
        config_path = Path(env.get("ZRELAY_CONFIG", "config.yaml"))

    values: Dict[str, Any] = _read_yaml(config_path)
    values.update({k: v for k, v in env.items() if v != ""})

    model_map = values.get("MODEL_MAP", DEFAULT_MODEL_MAP)
    if isinstance(model_map, dict):
        model_map = ",".join(f"{k}:{v}" for k, v in model_map.items())

    try:
        tags_mode = ThinkTagsMode(str(values.get("THINK_TAGS_MODE", "strip")).lower())
    except ValueError as e:
        raise ConfigError(
            f"THINK_TAGS_MODE must be one of {[m.value for m in ThinkTagsMode]}"
        ) from e

    # Accept the ":8080" form as well.
    port = str(values.get("PORT", "8080")).lstrip(":")

    return Settings(
        upstream_url=values.get("UPSTREAM_URL", DEFAULT_UPSTREAM_URL),
        api_key=str(values.get("DEFAULT_KEY", DEFAULT_API_KEY)),
        upstream_token=str(values.get("UPSTREAM_TOKEN", DEFAULT_UPSTREAM_TOKEN)),
        host=values.get("HOST", "0.0.0.0"),
        port=_as_number("PORT", port, int),
        model_map=parse_model_map(model_map),
        debug=_as_bool(values.get("DEBUG_MODE", True)),
        default_stream=_as_bool(values.get("DEFAULT_STREAM", True)),
        think_tags_mode=tags_mode,
        anon_token_enabled=_as_bool(values.get("ANON_TOKEN_ENABLED", True)),
        origin_base=str(values.get("ORIGIN_BASE", DEFAULT_ORIGIN_BASE)).rstrip("/"),
        fe_version=values.get("X_FE_VERSION", DEFAULT_FE_VERSION),
        model_owner=values.get("MODEL_OWNER", "z.ai"),
        credential_timeout=_as_number(
            "CREDENTIAL_TIMEOUT", values.get("CREDENTIAL_TIMEOUT", 10), float
        ),
        upstream_timeout=_as_number(
            "UPSTREAM_TIMEOUT", values.get("UPSTREAM_TIMEOUT", 60), float
        ),
    )


def configure_logging(settings: Settings) -> None:
    """Set the root log level from DEBUG_MODE."""
    level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    logging.getLogger("zrelay").setLevel(level)
    # httpx logs every request at INFO, which drowns the relay's own output.
    logging.getLogger("httpx").setLevel(logging.WARNING)
