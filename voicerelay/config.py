"""Configuration system for voicerelay.

Supports loading from YAML files, dicts, or programmatic construction via
Pydantic models. Per-call settings (voice, instructions, knowledge-base
thresholds) are resolved through a :class:`ConfigProvider` once the
telephony stream has started.
"""

from __future__ import annotations

import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import yaml
from pydantic import BaseModel, Field

from voicerelay.errors import ConfigurationError

if TYPE_CHECKING:
    from voicerelay.session import CallSession

DEFAULT_INSTRUCTIONS = (
    "You are a friendly, efficient phone receptionist. Keep answers short and "
    "conversational. Never use emojis: this is a voice call. When a caller "
    "asks a general question, use the answerQuestion tool and briefly cite "
    "the source."
)


class TelephonyConfig(BaseModel):
    """Where the telephony provider's media stream connects."""

    listen_host: str = "0.0.0.0"
    listen_port: int = 8010
    listen_path: str = "/media"
    public_host: str = ""


class RealtimeConfig(BaseModel):
    """Realtime speech model session settings."""

    url: str = "wss://api.openai.com/v1/realtime"
    model: str = "gpt-4o-realtime-preview"
    api_key: str = ""
    voice: str = ""
    instructions: str = DEFAULT_INSTRUCTIONS
    sample_rate: int = 16000
    turn_detection: Literal["server_vad", "none"] = "server_vad"
    modalities: list[str] = Field(default_factory=lambda: ["text", "audio"])
    auto_flush_bytes: int = 32000
    keepalive_interval: float = 20.0
    # 0 disables the silence check.
    max_silent_intervals: int = 0

    def resolved_api_key(self) -> str:
        return self.api_key or os.environ.get("OPENAI_API_KEY", "")

    def resolved_voice(self) -> str:
        return self.voice or os.environ.get("OPENAI_TTS_VOICE", "") or "alloy"

    def endpoint(self) -> str:
        separator = "&" if "?" in self.url else "?"
        return f"{self.url}{separator}model={self.model}"


class AudioConfig(BaseModel):
    downsample: Literal["decimate", "average"] = "decimate"


class WebhookToolConfig(BaseModel):
    """A tool served by an HTTP endpoint instead of in-process code."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    endpoint: str
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    timeout: float = 10.0


class ToolsConfig(BaseModel):
    # Extra ToolSpecs announced to the model in addition to registered ones.
    specs: list[dict[str, Any]] = Field(default_factory=list)
    webhooks: list[WebhookToolConfig] = Field(default_factory=list)


class PolicyThresholds(BaseModel):
    """Knowledge-base confidence policy."""

    kb_min_confidence: float = 0.55
    low_confidence_action: Literal["ask_clarify", "transfer", "voicemail"] = "ask_clarify"


class LoggingConfig(BaseModel):
    level: str = "INFO"


class BridgeConfig(BaseModel):
    """Top-level voicerelay configuration.

    Examples:
        # Programmatic
        config = BridgeConfig(realtime=RealtimeConfig(voice="verse"))

        # From YAML
        config = BridgeConfig.from_yaml("voicerelay.yaml")

        # Shorthand
        config = BridgeConfig.from_dict({"listen_port": 8010, "voice": "verse"})
    """

    telephony: TelephonyConfig = Field(default_factory=TelephonyConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    audio: AudioConfig = Field(default_factory=AudioConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    policy: PolicyThresholds = Field(default_factory=PolicyThresholds)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> BridgeConfig:
        """Load configuration from a YAML file, expanding ``${ENV_VAR}`` references."""
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} does not contain a mapping")
        return cls._from_raw(_expand_env(data))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BridgeConfig:
        """Load configuration from a dictionary.

        Supports both the full nested format and a flat shorthand format:

        Full format:
            {"telephony": {"listen_port": 8010}, "realtime": {"voice": "verse"}}

        Shorthand format:
            {"listen_port": 8010, "voice": "verse", "openai_api_key": "sk-..."}
        """
        return cls._from_raw(dict(data))

    @classmethod
    def _from_raw(cls, data: dict[str, Any]) -> BridgeConfig:
        flat_mappings = {
            "listen_host": ("telephony", "listen_host"),
            "listen_port": ("telephony", "listen_port"),
            "listen_path": ("telephony", "listen_path"),
            "public_host": ("telephony", "public_host"),
            "model": ("realtime", "model"),
            "openai_api_key": ("realtime", "api_key"),
            "voice": ("realtime", "voice"),
            "instructions": ("realtime", "instructions"),
            "turn_detection": ("realtime", "turn_detection"),
            "auto_flush_bytes": ("realtime", "auto_flush_bytes"),
            "keepalive_interval": ("realtime", "keepalive_interval"),
            "downsample": ("audio", "downsample"),
            "kb_min_confidence": ("policy", "kb_min_confidence"),
            "low_confidence_action": ("policy", "low_confidence_action"),
            "log_level": ("logging", "level"),
        }

        for flat_key, (section, nested_key) in flat_mappings.items():
            if flat_key in data:
                section_data = dict(data.get(section) or {})
                section_data[nested_key] = data.pop(flat_key)
                data[section] = section_data

        return cls(**data)


_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _expand_env(value: Any) -> Any:
    """Recursively replace ``${NAME}`` in strings with the environment value (or "")."""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def load_config(source: str | Path | dict[str, Any] | BridgeConfig | None = None) -> BridgeConfig:
    """Load a BridgeConfig from any supported source.

    Args:
        source: A YAML file path, a dict, an existing BridgeConfig, or None
            for defaults.
    """
    if source is None:
        return BridgeConfig()
    if isinstance(source, BridgeConfig):
        return source
    if isinstance(source, dict):
        return BridgeConfig.from_dict(source)
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        return BridgeConfig.from_yaml(path)
    raise TypeError(f"Cannot load config from {type(source)}")


# ---------------------------------------------------------------------------
# Per-call configuration
# ---------------------------------------------------------------------------


class CallConfig(BaseModel):
    """Settings resolved for one call after the telephony stream starts."""

    voice: str
    instructions: str
    policy: PolicyThresholds = Field(default_factory=PolicyThresholds)


class ConfigProvider(ABC):
    """Source of per-call settings, e.g. a settings table owned by an admin UI.

    Implementations must be safe to call concurrently from many calls.
    """

    @abstractmethod
    async def get_call_config(self, session: CallSession) -> CallConfig:
        ...


class StaticConfigProvider(ConfigProvider):
    """Serves the same settings to every call, straight from BridgeConfig."""

    def __init__(self, config: BridgeConfig) -> None:
        self._config = config

    async def get_call_config(self, session: CallSession) -> CallConfig:
        return CallConfig(
            voice=self._config.realtime.resolved_voice(),
            instructions=self._config.realtime.instructions,
            policy=self._config.policy,
        )


# Default YAML template for `voicerelay init`
DEFAULT_CONFIG_YAML = """\
# voicerelay configuration

telephony:
  listen_host: 0.0.0.0
  listen_port: 8010
  listen_path: /media
  public_host: ""          # host Twilio reaches for the media stream, e.g. abc.ngrok.app

realtime:
  model: gpt-4o-realtime-preview
  api_key: ${OPENAI_API_KEY}
  voice: alloy
  turn_detection: server_vad   # server_vad | none
  auto_flush_bytes: 32000      # ~1s of 16 kHz PCM16
  keepalive_interval: 20
  max_silent_intervals: 0      # 0 = never tear down a quiet session

audio:
  downsample: decimate         # decimate | average

policy:
  kb_min_confidence: 0.55
  low_confidence_action: ask_clarify   # ask_clarify | transfer | voicemail

tools:
  specs: []
  # webhooks:
  #   - name: checkAvailability
  #     description: Look up open appointment slots
  #     endpoint: https://example.com/tools/availability
  #     input_schema:
  #       type: object
  #       properties:
  #         date: {type: string}

logging:
  level: INFO
"""
