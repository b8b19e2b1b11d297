# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import json
import logging
from pathlib import Path
from typing import Any, ClassVar

import tomllib
import yaml


DEFAULT_CONFIG: dict[str, Any] = {
    "ffmpeg": {
        "path": None,  # None = search PATH, then imageio-ffmpeg's bundled binary
        "loglevel": "info",
    },
    "stream": {
        "source": "",
        "vcodec": "copy",  # copy | libx264 | hardware (or a concrete h264_* encoder)
        "acodec": "aac",  # copy | aac
        "bitrate": "1000k",
        "transport": "tcp",  # tcp | udp
        "preset": "veryfast",
        "resolution": "source",  # "source" or "WxH"
        "hw_encoder": "auto",
    },
    "outputs": {
        "youtube": {
            "url": "rtmp://a.rtmp.youtube.com/live2",
            "key": "",
            "enabled": True,
            "requires_key": True,
        },
        "facebook": {
            "url": "",
            "key": "",
            "enabled": False,
            "requires_key": False,
        },
    },
    "retry": {"max_retries": 5},
    "probe": {"timeout_s": 5.0},
    "log": {
        "level": "info",
        "buffer_lines": 500,
    },
}


def load_config_file(path: str) -> dict[str, Any]:
    """Load configuration from a file (YAML, TOML, or JSON)."""
    logger = logging.getLogger("config")
    path_obj = Path(path)
    ext = path_obj.suffix.lower()

    if not path_obj.exists():
        return {}

    try:
        if ext in (".yaml", ".yml"):
            with Path(path).open(encoding="utf-8") as f:
                return yaml.safe_load(f) or {}

        elif ext == ".toml":
            with Path(path).open("rb") as f:
                return tomllib.load(f) or {}

        elif ext == ".json":
            with Path(path).open(encoding="utf-8") as f:
                return json.load(f) or {}

        else:
            logger.warning(f"Unknown config extension: {ext}")
            return {}

    except Exception as e:
        logger.warning(f"Failed to load {path}: {e}")
        return {}


def deep_update(dst: dict[str, Any], src: dict[str, Any]) -> dict[str, Any]:
    """Deep merge configuration dictionaries."""
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            deep_update(dst[k], v)
        else:
            dst[k] = v
    return dst


def load_config(path: str | None = None) -> dict[str, Any]:
    """Load configuration with defaults and optional file override."""
    cfg = json.loads(json.dumps(DEFAULT_CONFIG))  # Deep copy

    if path:
        deep_update(cfg, load_config_file(path))

    return cfg


class Config:
    """Configuration singleton."""

    _instance: ClassVar["Config | None"] = None
    _config: ClassVar[dict[str, Any]] = load_config()

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def load(cls, path: str | None = None) -> None:
        """Load configuration from file."""
        cls._config = load_config(path)

    @classmethod
    def get(cls, key: str | None = None, default: Any = KeyError) -> Any:
        """Get configuration value by key path (e.g., 'stream.bitrate')."""
        if key is None:
            return cls._config

        keys = key.split(".")
        value = cls._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            elif default is not KeyError:
                return default
            else:
                raise KeyError(f"Configuration key not found: {key}")

        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value by key path."""
        keys = key.split(".")
        target = self._config

        for k in keys[:-1]:
            if k not in target:
                target[k] = {}
            target = target[k]

        target[keys[-1]] = value

    def update(self, updates: dict[str, Any]) -> None:
        """Update configuration with dictionary."""
        deep_update(self._config, updates)

    def __getitem__(self, key: str) -> Any:
        """Allow dict-like access."""
        return self.get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        """Allow dict-like assignment."""
        self.set(key, value)
