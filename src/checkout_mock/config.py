import copy
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml


DEFAULT_CONFIG: dict[str, Any] = {
    "server": {
        "host": "0.0.0.0",
        "gateway_port": 8200,
    },
    "storage": {
        "backend": "memory",
    },
    "mysql": {
        "host": "localhost",
        "port": 3306,
        "user": "checkout",
        "password": "Checkout2026",
        "database": "checkout",
        "charset": "utf8mb4",
    },
    "gateway": {
        "currency": "TRY",
        "challenge_code": "111111",
        "challenge_ttl_seconds": 300,
        "max_challenge_attempts": 3,
        "default_commission_rate": "1.99",
        "stale_payment_seconds": 1800,
        "reaper_interval_seconds": 30,
        "api_log_limit": 100,
        "api_log_body_limit": 5000,
    },
    "client": {
        "base_url": "http://localhost:8200",
        "timeout_seconds": 5.0,
    },
    "checkout": {
        "redirect_delay_seconds": 5,
    },
    "logging": {
        "format": "%(asctime)s [%(levelname)s] %(name)s [%(correlation_id)s]: %(message)s",
        "gateway_log": "gateway.log",
    },
}


def _deep_merge(base: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    for key, value in incoming.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _config_path() -> Path:
    value = os.environ.get("CHECKOUT_CONFIG_FILE")
    if value:
        return Path(value)
    return Path(__file__).resolve().parents[2] / "config.yaml"


def _apply_env_overrides(config: dict[str, Any]) -> None:
    if os.environ.get("CHECKOUT_HOST"):
        config["server"]["host"] = os.environ["CHECKOUT_HOST"]
    if os.environ.get("CHECKOUT_GATEWAY_PORT"):
        config["server"]["gateway_port"] = int(os.environ["CHECKOUT_GATEWAY_PORT"])

    if os.environ.get("CHECKOUT_STORAGE_BACKEND"):
        config["storage"]["backend"] = os.environ["CHECKOUT_STORAGE_BACKEND"]

    if os.environ.get("CHECKOUT_MYSQL_HOST"):
        config["mysql"]["host"] = os.environ["CHECKOUT_MYSQL_HOST"]
    if os.environ.get("CHECKOUT_MYSQL_PORT"):
        config["mysql"]["port"] = int(os.environ["CHECKOUT_MYSQL_PORT"])
    if os.environ.get("CHECKOUT_MYSQL_USER"):
        config["mysql"]["user"] = os.environ["CHECKOUT_MYSQL_USER"]
    if os.environ.get("CHECKOUT_MYSQL_PASSWORD"):
        config["mysql"]["password"] = os.environ["CHECKOUT_MYSQL_PASSWORD"]
    if os.environ.get("CHECKOUT_MYSQL_DATABASE"):
        config["mysql"]["database"] = os.environ["CHECKOUT_MYSQL_DATABASE"]

    if os.environ.get("CHECKOUT_CHALLENGE_TTL_SECONDS"):
        config["gateway"]["challenge_ttl_seconds"] = int(os.environ["CHECKOUT_CHALLENGE_TTL_SECONDS"])
    if os.environ.get("CHECKOUT_MAX_CHALLENGE_ATTEMPTS"):
        config["gateway"]["max_challenge_attempts"] = int(os.environ["CHECKOUT_MAX_CHALLENGE_ATTEMPTS"])
    if os.environ.get("CHECKOUT_STALE_PAYMENT_SECONDS"):
        config["gateway"]["stale_payment_seconds"] = int(os.environ["CHECKOUT_STALE_PAYMENT_SECONDS"])

    if os.environ.get("CHECKOUT_CLIENT_BASE_URL"):
        config["client"]["base_url"] = os.environ["CHECKOUT_CLIENT_BASE_URL"]
    if os.environ.get("CHECKOUT_CLIENT_TIMEOUT_SECONDS"):
        config["client"]["timeout_seconds"] = float(os.environ["CHECKOUT_CLIENT_TIMEOUT_SECONDS"])

    if os.environ.get("CHECKOUT_GATEWAY_LOG"):
        config["logging"]["gateway_log"] = os.environ["CHECKOUT_GATEWAY_LOG"]


@lru_cache(maxsize=1)
def load_config() -> dict[str, Any]:
    config = copy.deepcopy(DEFAULT_CONFIG)
    path = _config_path()

    if path.exists():
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Invalid YAML root in {path}: expected mapping")
        _deep_merge(config, data)

    _apply_env_overrides(config)
    return config


def reload_config() -> dict[str, Any]:
    load_config.cache_clear()
    return load_config()
