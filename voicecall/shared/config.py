"""Configuration loading and validation for voicecall.

Loads an optional JSON config file, validates it against the embedded
JSON Schema, applies environment variable overlays, and exposes typed
sections as pydantic models.

Usage:
    from voicecall.shared.config import VoiceCallConfig
    cfg = VoiceCallConfig.load("voicecall.json")
    policy = cfg.call_policy()

Environment variable overlays:
    VOICECALL_CALL__GRACE_DELAY_S=1.5
    VOICECALL_TRANSPORT__ASSISTANT_ID=asst_123
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

import jsonschema
from pydantic import BaseModel, Field, ValidationError, field_validator

from voicecall.voice.call_reducer import CallPolicy
from voicecall.voice.call_state import CallState

logger = logging.getLogger("voicecall.config")

ENV_PREFIX = "VOICECALL_"
CONFIG_PATH_ENV = "VOICECALL_CONFIG"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_CONFIG: Dict[str, Any] = {
    "call": {
        "grace_delay_s": 2.0,
        "connect_error_state": "idle",
        "restart_from_ended": False,
    },
    "transport": {
        "assistant_id": None,
        "public_key": None,
    },
    "diagnostics": {
        "capacity": 100,
        "jsonl_path": None,
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
    },
}

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "call": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "grace_delay_s": {"type": "number", "minimum": 0},
                "connect_error_state": {"enum": ["idle", "errored"]},
                "restart_from_ended": {"type": "boolean"},
            },
        },
        "transport": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "assistant_id": {"type": ["string", "null"]},
                "public_key": {"type": ["string", "null"]},
            },
        },
        "diagnostics": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "capacity": {"type": "integer", "minimum": 1},
                "jsonl_path": {"type": ["string", "null"]},
            },
        },
        "logging": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "level": {"enum": list(LOG_LEVELS)},
                "format": {"type": "string"},
            },
        },
    },
}


class ConfigValidationError(Exception):
    """Raised when config fails schema validation."""
    pass


# ── Typed sections ───────────────────────────────────────────────────────

class CallSettings(BaseModel):
    grace_delay_s: float = Field(default=2.0, ge=0.0)
    connect_error_state: Literal["idle", "errored"] = "idle"
    restart_from_ended: bool = False


class TransportSettings(BaseModel):
    assistant_id: Optional[str] = None
    public_key: Optional[str] = None


class DiagnosticsSettings(BaseModel):
    capacity: int = Field(default=100, ge=1)
    jsonl_path: Optional[str] = None


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = DEFAULT_CONFIG["logging"]["format"]

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level: {value}")
        return level


class VoiceCallConfig(BaseModel):
    """Validated voicecall configuration."""
    call: CallSettings = Field(default_factory=CallSettings)
    transport: TransportSettings = Field(default_factory=TransportSettings)
    diagnostics: DiagnosticsSettings = Field(default_factory=DiagnosticsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load(
        cls,
        path: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "VoiceCallConfig":
        """Load config file (if any), validate, apply env overlays."""
        environ = os.environ if environ is None else environ
        path = path or environ.get(CONFIG_PATH_ENV)

        raw: Dict[str, Any] = {}
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise ConfigValidationError(f"Config file not found: {config_path}")
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    raw = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigValidationError(f"Config file is not valid JSON: {e}") from e
        return cls.from_dict(raw, environ=environ)

    @classmethod
    def from_dict(
        cls,
        raw: Dict[str, Any],
        environ: Optional[Mapping[str, str]] = None,
    ) -> "VoiceCallConfig":
        try:
            jsonschema.validate(instance=raw, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            where = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "(root)"
            raise ConfigValidationError(
                f"Config validation failed at '{where}': {e.message}"
            ) from e

        merged = copy.deepcopy(DEFAULT_CONFIG)
        for section, values in raw.items():
            merged[section].update(values)
        for section, values in cls.env_overrides(os.environ if environ is None else environ).items():
            merged[section].update(values)
            logger.info("Env overlay applied: %s.%s", section, ",".join(sorted(values)))
        try:
            return cls.model_validate(merged)
        except ValidationError as e:
            raise ConfigValidationError(f"Config invalid after env overlay: {e}") from e

    @classmethod
    def env_overrides(cls, environ: Mapping[str, str]) -> Dict[str, Dict[str, str]]:
        """Collect VOICECALL_SECTION__KEY variables that name a known setting.

        Section and key are case-insensitive and matched against the typed
        section models. Values stay raw strings; pydantic coerces them to
        the field type when the merged config is validated.
        """
        overrides: Dict[str, Dict[str, str]] = {}
        for env_key, env_val in environ.items():
            if not env_key.startswith(ENV_PREFIX) or "__" not in env_key:
                continue
            section, key = (part.lower() for part in env_key[len(ENV_PREFIX):].split("__", 1))
            field = cls.model_fields.get(section)
            if field is None or key not in field.annotation.model_fields:
                logger.debug("Env overlay %s: no setting %s.%s, skipping", env_key, section, key)
                continue
            overrides.setdefault(section, {})[key] = env_val
        return overrides

    def call_policy(self) -> CallPolicy:
        return CallPolicy(
            grace_delay_s=self.call.grace_delay_s,
            connect_error_state=(
                CallState.ERRORED if self.call.connect_error_state == "errored" else CallState.IDLE
            ),
            restart_from_ended=self.call.restart_from_ended,
        )


def configure_logging(config: VoiceCallConfig) -> None:
    """Apply the configured level and format to the voicecall logger tree."""
    logging.basicConfig(format=config.logging.format)
    logging.getLogger("voicecall").setLevel(config.logging.level.upper())
