"""Configuration loading from defaults, an optional YAML file and env vars.

Priority (highest last): dataclass defaults <- YAML file <- LOGSCOPE_* env vars.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any

import yaml

from logscope.models import StreamingConfig

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Config:
    log_level: str = "INFO"
    max_records: int = 10000
    output_format: str = "text"
    color: bool = False
    polling_interval: int = 5000
    retry_attempts: int = 3
    retry_delay: int = 3000
    request_timeout: float = 10.0
    stream: dict[str, Any] = field(default_factory=dict)


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s is not a mapping, using defaults", path)
        return {}
    logger.info("Loaded YAML config from %s", path)
    return data


def load_config(yaml_data: dict | None = None) -> Config:
    """Build Config from YAML data and environment variables."""
    data = yaml_data or {}
    env = os.environ

    log_level = str(env.get("LOGSCOPE_LOG_LEVEL", data.get("log_level", Config.log_level))).upper()
    if log_level not in LOG_LEVELS:
        logger.warning("Unknown log level %s, using INFO", log_level)
        log_level = "INFO"

    return Config(
        log_level=log_level,
        max_records=int(env.get("LOGSCOPE_MAX_RECORDS", data.get("max_records", Config.max_records))),
        output_format=str(env.get("LOGSCOPE_OUTPUT", data.get("output", Config.output_format))),
        color=_parse_bool(env.get("LOGSCOPE_COLOR", data.get("color", Config.color))),
        polling_interval=int(
            env.get("LOGSCOPE_POLL_INTERVAL", data.get("polling_interval", Config.polling_interval))
        ),
        retry_attempts=int(
            env.get("LOGSCOPE_RETRY_ATTEMPTS", data.get("retry_attempts", Config.retry_attempts))
        ),
        retry_delay=int(env.get("LOGSCOPE_RETRY_DELAY", data.get("retry_delay", Config.retry_delay))),
        request_timeout=float(
            env.get("LOGSCOPE_REQUEST_TIMEOUT", data.get("request_timeout", Config.request_timeout))
        ),
        stream=dict(data.get("stream") or {}),
    )


def streaming_config_from_dict(data: dict[str, Any], defaults: Config | None = None) -> StreamingConfig:
    """Build a StreamingConfig from a `stream:` section, filling gaps from *defaults*."""
    defaults = defaults or Config()
    if not data.get("endpoint"):
        raise ValueError("stream.endpoint is required")
    return StreamingConfig(
        endpoint=str(data["endpoint"]),
        method=str(data.get("method", "GET")).upper(),
        headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
        polling_interval=int(data.get("polling_interval", defaults.polling_interval)),
        use_socket=_parse_bool(data.get("use_socket", False)),
        retry_attempts=int(data.get("retry_attempts", defaults.retry_attempts)),
        retry_delay=int(data.get("retry_delay", defaults.retry_delay)),
        timeout=float(data.get("timeout", defaults.request_timeout)),
    )
