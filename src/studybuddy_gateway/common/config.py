"""Gateway settings: secrets from the environment, tuning from YAML."""
from __future__ import annotations
import base64
import binascii
import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import find_dotenv, load_dotenv

from studybuddy_gateway.common.errors import ConfigError
from studybuddy_gateway.common.schema import Credential

LOGGER = logging.getLogger("studybuddy.config")

DEFAULT_CONFIG_PATH = "configs/gateway.yaml"
DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_API_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_CORS_ORIGIN = "https://api-testengine.netlify.app"
BATCH_SIZE = 1000

ROTATION_BATCHED = "batched"
ROTATION_FALLBACK = "fallback"
ROTATION_POLICIES = (ROTATION_BATCHED, ROTATION_FALLBACK)

# YAML generation keys -> Gemini generationConfig keys
_GENERATION_KEYS = {
    "temperature": "temperature",
    "top_p": "topP",
    "max_output_tokens": "maxOutputTokens",
}

_NUMBERED_KEY = re.compile(r"^GEMINI_API_KEY_(\d+)$")


@dataclass(frozen=True)
class Settings:
    """Validated gateway configuration."""

    credentials: tuple[Credential, ...]
    firebase_credential: dict[str, Any] | None = field(default=None, repr=False)
    model: str = DEFAULT_MODEL
    rotation: str = ROTATION_BATCHED
    batch_size: int = BATCH_SIZE
    request_timeout: float = 30.0
    auth_timeout: float = 10.0
    api_base_url: str = DEFAULT_API_BASE_URL
    host: str = "0.0.0.0"
    port: int = 5000
    cors_origin: str = DEFAULT_CORS_ORIGIN
    generation: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.credentials:
            raise ConfigError(
                "No Gemini API keys configured; set GEMINI_API_KEY_1..N or GEMINI_API_KEY"
            )
        if self.rotation not in ROTATION_POLICIES:
            raise ConfigError(
                f"Unknown rotation policy {self.rotation!r}; expected one of {ROTATION_POLICIES}"
            )
        if self.batch_size < 1:
            raise ConfigError("batch_size must be at least 1")
        if self.request_timeout <= 0 or self.auth_timeout <= 0:
            raise ConfigError("Timeouts must be positive")


def load_env_file() -> None:
    """Read .env from the working directory (or its parents) into os.environ."""
    load_dotenv(find_dotenv(usecwd=True))


def allowed_origin(env: Mapping[str, str] | None = None) -> str:
    """The single browser origin allowed to call the gateway."""
    env = os.environ if env is None else env
    return (env.get("CORS_ORIGIN") or DEFAULT_CORS_ORIGIN).strip()


def load_cfg(path: str | Path) -> dict[str, Any]:
    """Read a YAML config file; a missing file yields an empty mapping."""
    p = Path(path)
    if not p.exists():
        LOGGER.info("No config file at %s; using defaults", p)
        return {}
    with open(p, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {p} must contain a mapping")
    return data


def collect_api_keys(env: Mapping[str, str]) -> tuple[Credential, ...]:
    """
    Build the credential pool from the environment.

    Numbered keys (GEMINI_API_KEY_1, GEMINI_API_KEY_2, ...) are ordered by
    their number; GEMINI_API_KEY is used only when no numbered key is set.
    """
    numbered: list[tuple[int, str]] = []
    for name, value in env.items():
        m = _NUMBERED_KEY.match(name)
        if m and value and value.strip():
            numbered.append((int(m.group(1)), value.strip()))
    keys = [value for _, value in sorted(numbered)]
    if not keys:
        single = (env.get("GEMINI_API_KEY") or "").strip()
        if single:
            keys = [single]
    return tuple(Credential(slot=i, key=k) for i, k in enumerate(keys, start=1))


def decode_service_account(encoded: str) -> dict[str, Any]:
    """Decode the base64 Firebase service-account JSON."""
    try:
        raw = base64.b64decode(encoded, validate=True)
        info = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        # never echo the encoded value
        raise ConfigError("FIREBASE_JSON is not valid base64-encoded JSON") from e
    if not isinstance(info, dict):
        raise ConfigError("FIREBASE_JSON must decode to a JSON object")
    return info


def _generation_config(raw: Any) -> dict[str, Any]:
    if not raw:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("generation must be a mapping")
    out: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in _GENERATION_KEYS:
            raise ConfigError(f"Unknown generation option {key!r}")
        if value is not None:
            out[_GENERATION_KEYS[key]] = value
    return out


def load_settings(env: Mapping[str, str] | None = None, cfg_path: str | Path | None = None) -> Settings:
    """
    Load settings from the environment and the YAML config file.

    Args:
        env: Environment mapping. Defaults to os.environ after reading .env.
        cfg_path: YAML path. Defaults to $GATEWAY_CONFIG or configs/gateway.yaml.
    """
    if env is None:
        load_env_file()
        env = os.environ
    cfg = load_cfg(cfg_path or env.get("GATEWAY_CONFIG", DEFAULT_CONFIG_PATH))

    firebase_json = env.get("FIREBASE_JSON")
    firebase_credential = decode_service_account(firebase_json) if firebase_json else None

    try:
        return Settings(
            credentials=collect_api_keys(env),
            firebase_credential=firebase_credential,
            model=str(env.get("GEMINI_MODEL") or cfg.get("model", DEFAULT_MODEL)),
            rotation=str(env.get("KEY_ROTATION") or cfg.get("rotation", ROTATION_BATCHED)).lower(),
            batch_size=int(cfg.get("batch_size", BATCH_SIZE)),
            request_timeout=float(cfg.get("request_timeout", 30.0)),
            auth_timeout=float(cfg.get("auth_timeout", 10.0)),
            api_base_url=str(cfg.get("api_base_url", DEFAULT_API_BASE_URL)).rstrip("/"),
            host=env.get("HOST", "0.0.0.0"),
            port=int(env.get("AI_PORT", "5000")),
            cors_origin=allowed_origin(env),
            generation=_generation_config(cfg.get("generation")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}") from e
