# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, ClassVar


@dataclass
class FieldDef:
    """Definition of a field with type, validation, and defaults."""

    name: str
    field_type: type
    validator: Callable[[Any], bool] | None = None
    default_factory: Callable[..., Any] | None = None
    transformer: Callable[[Any], Any] | None = None
    description: str = ""

    def validate(self, value: Any) -> bool:
        """Validate a field value."""
        if self.validator:
            try:
                return self.validator(value)
            except (ValueError, TypeError):
                return False
        return True

    def get_default(self, config=None) -> Any:
        """Get default value for this field."""
        if self.default_factory:
            if config is not None:
                return self.default_factory(config)
            else:
                return self.default_factory()
        return None

    def transform(self, value: Any) -> Any:
        """Transform a field value."""
        if self.transformer:
            return self.transformer(value)
        return value


VIDEO_CODEC_ALIASES = {
    "copy": "copy",
    "pass-through": "copy",
    "passthrough": "copy",
    "libx264": "libx264",
    "software": "libx264",
    "software-encode": "libx264",
    "hardware": "hardware",
    "hardware-encode": "hardware",
}

AUDIO_CODEC_ALIASES = {
    "copy": "copy",
    "pass-through": "copy",
    "passthrough": "copy",
    "aac": "aac",
    "transcode-aac": "aac",
}

_RESOLUTION_RE = re.compile(r"^\d{2,5}x\d{2,5}$")
_BITRATE_RE = re.compile(r"^\d+(\.\d+)?[kKmM]?$")


def _is_video_codec(x: Any) -> bool:
    s = str(x).strip().lower()
    # Concrete hardware encoders (h264_vaapi, h264_mediacodec, ...) select hardware mode
    return s in VIDEO_CODEC_ALIASES or s.startswith("h264_")


class StreamFields:
    """Fields related to the source and its encoding parameters."""

    SOURCE = FieldDef(
        "src",
        str,
        validator=lambda x: len(str(x).strip()) > 0,
        transformer=lambda x: str(x).strip(),
        default_factory=lambda config: config.get("stream.source"),
        description="Camera source address",
    )

    VCODEC = FieldDef(
        "vcodec",
        str,
        _is_video_codec,
        transformer=lambda x: str(x).strip().lower(),
        default_factory=lambda config: config.get("stream.vcodec"),
        description="Video codec mode",
    )

    ACODEC = FieldDef(
        "acodec",
        str,
        lambda x: str(x).strip().lower() in AUDIO_CODEC_ALIASES,
        transformer=lambda x: AUDIO_CODEC_ALIASES[str(x).strip().lower()],
        default_factory=lambda config: config.get("stream.acodec"),
        description="Audio codec mode",
    )

    BITRATE = FieldDef(
        "bitrate",
        str,
        lambda x: bool(_BITRATE_RE.match(str(x).strip())),
        transformer=lambda x: str(x).strip(),
        default_factory=lambda config: config.get("stream.bitrate"),
        description="Target video bitrate",
    )

    TRANSPORT = FieldDef(
        "transport",
        str,
        lambda x: str(x).strip().lower() in ("tcp", "udp"),
        transformer=lambda x: str(x).strip().lower(),
        default_factory=lambda config: config.get("stream.transport"),
        description="RTSP transport mode",
    )

    PRESET = FieldDef(
        "preset",
        str,
        lambda x: str(x).strip().lower()
        in ("ultrafast", "superfast", "veryfast", "faster", "fast", "medium", "slow", "slower", "veryslow"),
        transformer=lambda x: str(x).strip().lower(),
        default_factory=lambda config: config.get("stream.preset"),
        description="Software encoder preset",
    )

    RESOLUTION = FieldDef(
        "resolution",
        str,
        lambda x: str(x).strip().lower() == "source" or bool(_RESOLUTION_RE.match(str(x).strip().lower())),
        transformer=lambda x: str(x).strip().lower(),
        default_factory=lambda config: config.get("stream.resolution"),
        description="Output resolution",
    )

    HW_ENCODER = FieldDef(
        "hw_encoder",
        str,
        lambda x: len(str(x).strip()) > 0,
        transformer=lambda x: str(x).strip().lower(),
        default_factory=lambda config: config.get("stream.hw_encoder"),
        description="Hardware encoder preference",
    )


class OutputFields:
    """Fields related to delivery targets."""

    OUTPUTS = FieldDef(
        "outputs",
        dict,
        lambda x: isinstance(x, dict) and all(isinstance(v, dict) for v in x.values()),
        default_factory=lambda config: config.get("outputs"),
        description="Named output targets",
    )

    LABEL = FieldDef("label", str, description="Trigger label (empty for manual start)")


class ProbeFields:
    """Fields specific to probe requests."""

    TIMEOUT = FieldDef(
        "timeout",
        float,
        lambda x: 0.0 < float(x) <= 60.0,
        default_factory=lambda config: config.get("probe.timeout_s"),
        description="Probe timeout in seconds",
    )


class ProtocolFields:
    """Fields specific to control protocol infrastructure."""

    TYPE = FieldDef("type", str, description="Message type")
    TIMESTAMP = FieldDef("t", int, description="Timestamp for ping/pong")
    DEVICE_ID = FieldDef("device_id", str, description="Client device identifier")


class AllFields:
    """Centralized registry of all field definitions organized by domain."""

    ALL_FIELDS: ClassVar[dict[str, Any]] = {}

    @classmethod
    def _populate_registry(cls):
        """Populate the flat field registry from domain classes."""
        for domain_class in [StreamFields, OutputFields, ProbeFields, ProtocolFields]:
            for attr_name in dir(domain_class):
                attr = getattr(domain_class, attr_name)
                if isinstance(attr, FieldDef):
                    cls.ALL_FIELDS[attr.name] = attr

    # Field groups for different operations
    REQUIRED_FOR_START: ClassVar[set[str]] = set()
    REQUIRED_FOR_STOP: ClassVar[set[str]] = set()
    REQUIRED_FOR_PROBE: ClassVar[set[str]] = {"src"}

    APPLIED_FIELDS: ClassVar[set[str]] = {
        "src",
        "vcodec",
        "acodec",
        "bitrate",
        "transport",
        "preset",
        "resolution",
        "hw_encoder",
        "label",
    }

    @classmethod
    def validate_fields(cls, params: dict[str, Any], operation: str) -> None:
        """Validate that required fields are present and valid for an operation."""
        required: set[str] = getattr(cls, f"REQUIRED_FOR_{operation.upper()}", set())

        missing = [f for f in sorted(required) if f not in params]
        if missing:
            field_names = [cls.ALL_FIELDS[f].description for f in missing if f in cls.ALL_FIELDS]
            raise ValueError(f"{operation} requires {', '.join(field_names)} (missing: {', '.join(missing)})")

        for field_name, value in params.items():
            if field_name in cls.ALL_FIELDS and value is not None:
                field_def = cls.ALL_FIELDS[field_name]
                if not field_def.validate(value):
                    raise ValueError(f"Invalid {field_name}: {value}")

    @classmethod
    def extract_applied_params(cls, params: dict[str, Any]) -> dict[str, Any]:
        """Extract parameters that were applied to the stream."""
        return {k: v for k, v in params.items() if k in cls.APPLIED_FIELDS}

    @classmethod
    def get_field_info(cls, field_name: str) -> FieldDef | None:
        """Get field definition by name."""
        return cls.ALL_FIELDS.get(field_name)


# Populate the registry
AllFields._populate_registry()

ControlFields = AllFields
