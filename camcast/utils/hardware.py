# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import logging
import platform
import shutil
import subprocess
from typing import Optional

# Cache for hardware encoder detection
_hw_encoder_cache = None


def get_ffmpeg_exe_path(configured: Optional[str] = None) -> Optional[str]:
    """Find FFmpeg executable path."""
    if configured:
        return shutil.which(configured) or configured
    exe = shutil.which("ffmpeg")
    if exe:
        return exe
    try:
        import imageio_ffmpeg  # type: ignore[import]  # imageio-ffmpeg has no type stubs
        return imageio_ffmpeg.get_ffmpeg_exe()
    except Exception:
        return None


def parse_encoder_list(out: str) -> set[str]:
    """Extract encoder names from `ffmpeg -encoders` output.

    Encoder rows look like ` V....D h264_vaapi  H.264/AVC (VAAPI) (codec h264)`;
    the header block above the `------` separator is skipped.
    """
    names = set()
    in_table = False
    for line in out.splitlines():
        stripped = line.strip()
        if stripped.startswith("------"):
            in_table = True
            continue
        if not in_table or not stripped:
            continue
        parts = stripped.split()
        if len(parts) >= 2 and parts[0].startswith("V"):
            names.add(parts[1].lower())
    return names


def _build_hw_encoder_cache():
    """Build cache of available video encoders."""
    from ..config import Config

    exe = get_ffmpeg_exe_path(Config.get("ffmpeg.path", None))
    if not exe:
        return set()

    try:
        out = subprocess.check_output([exe, "-hide_banner", "-encoders"], text=True, stderr=subprocess.STDOUT)
        return parse_encoder_list(out)
    except Exception:
        return set()


def pick_hw_encoder(prefer: Optional[str] = None) -> Optional[str]:
    """Pick the best hardware H.264 encoder for this system."""
    global _hw_encoder_cache
    if _hw_encoder_cache is None:
        _hw_encoder_cache = _build_hw_encoder_cache()

    sys = platform.system().lower()
    prefer = (prefer or "auto").lower()
    ALIASES = {
        "vaapi": "h264_vaapi",
        "qsv": "h264_qsv",
        "nvenc": "h264_nvenc",
        "cuda": "h264_nvenc",
        "videotoolbox": "h264_videotoolbox",
        "mediacodec": "h264_mediacodec",
        "amf": "h264_amf",
        "v4l2m2m": "h264_v4l2m2m",
    }

    def norm(n):
        return ALIASES.get(n, n)

    if prefer not in ("", "auto", "none"):
        pn = norm(prefer)
        if pn in _hw_encoder_cache:
            return pn
        logging.getLogger('hardware').warning(f"hw encoder {pn} not available in this ffmpeg build")
        return None

    # Auto selection based on platform
    candidates: tuple[str, ...]
    if sys == "windows":
        candidates = ("h264_nvenc", "h264_qsv", "h264_amf")
    elif sys == "darwin":
        candidates = ("h264_videotoolbox",)
    else:
        candidates = ("h264_mediacodec", "h264_vaapi", "h264_qsv", "h264_nvenc", "h264_v4l2m2m")

    for cand in candidates:
        if cand in _hw_encoder_cache:
            return cand

    return None
