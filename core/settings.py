"""
JSON-file backed configuration for the Stack Notifier runtime.
"""

from __future__ import annotations

import copy
import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from stack_notifier.stack_notifier import logger as app_logger

_LOGGER = app_logger.get_logger()

_THEMES = ("light", "dark", "system")
_MAX_PORT = 65535

DEFAULT_CONFIG: Dict[str, Any] = {
    "theme": "system",
    "server": {
        "port": 38080,
    },
    "udp": {
        "enabled": True,
        "port": 38081,
        "broadcastAddress": "255.255.255.255",
        "broadcastPort": 38081,
        "sharedKey": "",
    },
    "notification": {
        "maxVisible": 3,
        "maxQueued": 100,
        "defaultTimeout": 5000,
        "maxWidth": 0.2,
        "maxHeight": 0.33,
        "minHeight": 30,
        "spacing": 10,
        "marginTop": 10,
        "marginRight": 10,
        "animation": {
            "duration": 300,
            "reStackDuration": 150,
        },
    },
    "style": {
        "customCssPath": "",
    },
}


@dataclass(eq=True)
class AnimationSettings:
    duration_ms: int = 300
    restack_duration_ms: int = 150


@dataclass(eq=True)
class NotificationSettings:
    max_visible: int = 3
    max_queued: int = 100
    default_timeout_ms: int = 5000
    max_width_ratio: float = 0.2
    max_height_ratio: float = 0.33
    min_height: int = 30
    spacing: int = 10
    margin_top: int = 10
    margin_right: int = 10
    animation: AnimationSettings = field(default_factory=AnimationSettings)


@dataclass(eq=True)
class UdpSettings:
    enabled: bool = True
    port: int = 38081
    broadcast_address: str = "255.255.255.255"
    broadcast_port: int = 38081
    shared_key: str = ""


@dataclass(eq=True)
class ServerSettings:
    port: int = 38080


@dataclass(eq=True)
class CoreSettings:
    theme: str = "system"
    server: ServerSettings = field(default_factory=ServerSettings)
    udp: UdpSettings = field(default_factory=UdpSettings)
    notification: NotificationSettings = field(default_factory=NotificationSettings)
    custom_css_path: str = ""


def default_config_path() -> Path:
    override = os.environ.get("STACK_NOTIFIER_CONFIG")
    if override:
        return Path(override)
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming")) / "StackNotifier"
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support" / "StackNotifier"
    else:
        base = Path.home() / ".config" / "stack-notifier"
    return base / "config.json"


def merge_configs(defaults: Mapping[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep-merge ``overrides`` over ``defaults``; nested objects merge, everything else replaces."""
    result = copy.deepcopy(dict(defaults))
    for key, value in overrides.items():
        base_value = result.get(key)
        if isinstance(value, dict) and isinstance(base_value, dict):
            result[key] = merge_configs(base_value, value)
        elif value is not None:
            result[key] = value
    return result


class CoreSettingsManager:
    """Loads persisted settings from the config file and clamps invalid data."""

    def __init__(self, config_path: Optional[Path] = None) -> None:
        self.config_path = Path(config_path) if config_path else default_config_path()

    def read_settings(self) -> CoreSettings:
        raw = self._load_raw()
        return settings_from_mapping(merge_configs(DEFAULT_CONFIG, raw))

    def read_custom_css(self, settings: CoreSettings) -> str:
        if not settings.custom_css_path:
            return ""
        try:
            return Path(settings.custom_css_path).read_text(encoding="utf-8")
        except OSError as exc:
            _LOGGER.error("Failed to read custom stylesheet {}: {}", settings.custom_css_path, exc)
            return ""

    def _load_raw(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            self._write_defaults()
            return {}
        try:
            document = json.loads(self.config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            _LOGGER.error("Failed to load configuration from {}: {}. Using defaults.", self.config_path, exc)
            return {}
        if not isinstance(document, dict):
            _LOGGER.error("Configuration root in {} is not an object. Using defaults.", self.config_path)
            return {}
        return document

    def _write_defaults(self) -> None:
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            self.config_path.write_text(json.dumps(DEFAULT_CONFIG, indent=2), encoding="utf-8")
        except OSError as exc:
            _LOGGER.warning("Could not write default configuration to {}: {}", self.config_path, exc)
            return
        _LOGGER.info("Default configuration written to {}", self.config_path)


def settings_from_mapping(config: Mapping[str, Any]) -> CoreSettings:
    """Build typed settings from a merged config mapping, clamping out-of-range values."""
    server = _section(config, "server")
    udp = _section(config, "udp")
    notification = _section(config, "notification")
    animation = _section(notification, "animation")
    style = _section(config, "style")

    theme = config.get("theme", "system")
    if theme not in _THEMES:
        _LOGGER.warning("Unknown theme {!r} in configuration. Falling back to 'system'.", theme)
        theme = "system"

    return CoreSettings(
        theme=theme,
        server=ServerSettings(port=_read_int(server, "port", 38080, 1, _MAX_PORT)),
        udp=UdpSettings(
            enabled=_read_bool(udp, "enabled", True),
            port=_read_int(udp, "port", 38081, 1, _MAX_PORT),
            broadcast_address=_read_str(udp, "broadcastAddress", "255.255.255.255"),
            broadcast_port=_read_int(udp, "broadcastPort", 38081, 1, _MAX_PORT),
            shared_key=_read_str(udp, "sharedKey", ""),
        ),
        notification=NotificationSettings(
            max_visible=_read_int(notification, "maxVisible", 3, 1, 20),
            max_queued=_read_int(notification, "maxQueued", 100, 0, 10_000),
            default_timeout_ms=_read_int(notification, "defaultTimeout", 5000, 1, 24 * 60 * 60 * 1000),
            max_width_ratio=_read_ratio(notification, "maxWidth", 0.2),
            max_height_ratio=_read_ratio(notification, "maxHeight", 0.33),
            min_height=_read_int(notification, "minHeight", 30, 1, 10_000),
            spacing=_read_int(notification, "spacing", 10, 0, 1000),
            margin_top=_read_int(notification, "marginTop", 10, 0, 1000),
            margin_right=_read_int(notification, "marginRight", 10, 0, 1000),
            animation=AnimationSettings(
                duration_ms=_read_int(animation, "duration", 300, 0, 10_000),
                restack_duration_ms=_read_int(animation, "reStackDuration", 150, 0, 10_000),
            ),
        ),
        custom_css_path=_read_str(style, "customCssPath", ""),
    )


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name)
    if isinstance(value, dict):
        return value
    if value is not None:
        _LOGGER.warning("Configuration section {!r} is not an object; using defaults.", name)
    return {}


def _read_bool(section: Mapping[str, Any], name: str, default: bool) -> bool:
    value = section.get(name, default)
    if isinstance(value, bool):
        return value
    _LOGGER.warning("Configuration value {} has unexpected type {}.", name, type(value).__name__)
    return default


def _read_str(section: Mapping[str, Any], name: str, default: str) -> str:
    value = section.get(name, default)
    if isinstance(value, str):
        return value
    _LOGGER.warning("Configuration value {} has unexpected type {}.", name, type(value).__name__)
    return default


def _read_int(section: Mapping[str, Any], name: str, default: int, minimum: int, maximum: int) -> int:
    value = section.get(name, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _LOGGER.warning("Configuration value {} has unexpected type {}.", name, type(value).__name__)
        return default
    if value != value:
        return default
    if value < minimum or value > maximum:
        _LOGGER.warning(
            "Invalid value {} for {} found in configuration. Clamping to safe bounds.",
            value,
            name,
        )
    return int(max(minimum, min(maximum, value)))


def _read_ratio(section: Mapping[str, Any], name: str, default: float) -> float:
    value = section.get(name, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
        _LOGGER.warning("Configuration value {} has unexpected type {}.", name, type(value).__name__)
        return default
    if value <= 0 or value > 1:
        _LOGGER.warning(
            "Invalid ratio {} for {} found in configuration. Clamping to safe bounds.",
            value,
            name,
        )
    return float(max(0.01, min(1.0, value)))
