# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, Tuple
import json
import logging

from ..config import Config, deep_update
from ..media.exceptions import ConfigurationError
from ..utils.fields import StreamFields, OutputFields, VIDEO_CODEC_ALIASES
from ..utils.hardware import pick_hw_encoder
from ..utils.helpers import join_stream_url, mask_url


class VideoMode(str, Enum):
    PASSTHROUGH = "copy"
    SOFTWARE = "libx264"
    HARDWARE = "hardware"


class AudioMode(str, Enum):
    PASSTHROUGH = "copy"
    AAC = "aac"


@dataclass(frozen=True)
class OutputTarget:
    """A named live-streaming destination."""
    name: str
    url: str
    key: str = ""
    enabled: bool = True
    requires_key: bool = False

    @property
    def delivery_url(self) -> str:
        return join_stream_url(self.url, self.key)

    @property
    def is_usable(self) -> bool:
        """Enabled, has an ingest URL, and has a stream key when the service needs one."""
        if not self.enabled or not self.url.strip():
            return False
        return bool(self.key.strip()) or not self.requires_key

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> 'OutputTarget':
        return cls(
            name=name,
            url=str(data.get("url") or ""),
            key=str(data.get("key") or ""),
            enabled=bool(data.get("enabled", True)),
            requires_key=bool(data.get("requires_key", False)),
        )


@dataclass(frozen=True)
class StreamConfig:
    """Immutable description of one streaming session."""

    source: str = ""
    outputs: Tuple[OutputTarget, ...] = field(default_factory=tuple)
    video_mode: VideoMode = VideoMode.PASSTHROUGH
    audio_mode: AudioMode = AudioMode.AAC
    bitrate: str = "1000k"
    transport: str = "tcp"
    preset: str = "veryfast"
    resolution: str = "source"
    # Concrete encoder for VideoMode.HARDWARE, resolved before the config is built
    hw_encoder: Optional[str] = None

    def usable_outputs(self) -> list[OutputTarget]:
        """Outputs that will actually receive the stream, in configured order."""
        return [o for o in self.outputs if o.is_usable]

    @property
    def is_streamable(self) -> bool:
        return bool(self.source.strip()) and bool(self.usable_outputs())

    def validate(self) -> None:
        """Raise ConfigurationError unless this config can be streamed."""
        if not self.source.strip():
            raise ConfigurationError("No camera source configured")
        if not self.usable_outputs():
            missing_keys = [o.name for o in self.outputs if o.enabled and o.url.strip() and o.requires_key]
            if missing_keys:
                raise ConfigurationError(
                    f"Stream key missing for {', '.join(missing_keys)}", source_url=self.source
                )
            raise ConfigurationError("No enabled output configured", source_url=self.source)

    @classmethod
    def from_params(cls, params: Dict[str, Any], config: Optional[Config] = None) -> 'StreamConfig':
        """Create a StreamConfig from control parameters, filling gaps from config defaults.

        Parameters are expected to have passed ControlFields validation already.
        """
        config = config or Config()
        values: Dict[str, Any] = {}

        for field_def in (
            StreamFields.SOURCE,
            StreamFields.VCODEC,
            StreamFields.ACODEC,
            StreamFields.BITRATE,
            StreamFields.TRANSPORT,
            StreamFields.PRESET,
            StreamFields.RESOLUTION,
            StreamFields.HW_ENCODER,
        ):
            raw = params.get(field_def.name)
            if raw is None:
                raw = field_def.get_default(config)
            values[field_def.name] = field_def.transform(raw) if field_def.validate(raw) else raw

        outputs_cfg = json.loads(json.dumps(OutputFields.OUTPUTS.get_default(config) or {}))
        if isinstance(params.get("outputs"), dict):
            deep_update(outputs_cfg, params["outputs"])
        outputs = tuple(OutputTarget.from_dict(name, data or {}) for name, data in outputs_cfg.items())

        vcodec = str(values["vcodec"] or "copy").lower()
        hw_encoder = None
        if vcodec.startswith("h264_"):
            video_mode = VideoMode.HARDWARE
            hw_encoder = vcodec
        else:
            video_mode = VideoMode(VIDEO_CODEC_ALIASES.get(vcodec, "copy"))

        if video_mode is VideoMode.HARDWARE and hw_encoder is None:
            pref = str(values["hw_encoder"] or "auto").lower()
            hw_encoder = pref if pref.startswith("h264_") else pick_hw_encoder(pref)
            logging.getLogger('streaming').debug(f"Resolved hw_encoder={pref} to {hw_encoder}")

        return cls(
            source=str(values["src"] or ""),
            outputs=outputs,
            video_mode=video_mode,
            audio_mode=AudioMode(values["acodec"] if values["acodec"] in ("copy", "aac") else "aac"),
            bitrate=str(values["bitrate"] or "1000k"),
            transport=str(values["transport"] or "tcp"),
            preset=str(values["preset"] or "veryfast"),
            resolution=str(values["resolution"] or "source"),
            hw_encoder=hw_encoder,
        )

    def get_applied_params(self) -> Dict[str, Any]:
        """Get parameters that were applied to the stream (for control protocol response)."""
        return {
            "src": mask_url(self.source),
            "vcodec": self.hw_encoder if self.video_mode is VideoMode.HARDWARE else self.video_mode.value,
            "acodec": self.audio_mode.value,
            "bitrate": self.bitrate,
            "transport": self.transport,
            "preset": self.preset,
            "resolution": self.resolution,
            "outputs": [o.name for o in self.usable_outputs()],
        }

    def log_info(self, session_info: str) -> None:
        """Log streaming configuration info."""
        logging.getLogger('streaming').info(
            f"start_stream {session_info} src={mask_url(self.source)} "
            f"outputs={','.join(o.name for o in self.usable_outputs()) or '-'} "
            f"vcodec={self.video_mode.value} acodec={self.audio_mode.value} bitrate={self.bitrate} "
            f"transport={self.transport} preset={self.preset} resolution={self.resolution} hw={self.hw_encoder}"
        )
