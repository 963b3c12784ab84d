"""Media helpers powered by ffmpeg/ffprobe, plus input asset download."""

from __future__ import annotations

import json
import logging
import math
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import httpx

from compositor.core.errors import (
    CompositorError,
    DownloadFailedError,
    DurationProbeFailedError,
    RenderFailedError,
)
from compositor.schemas.config import RenderConfig
from compositor.services.filter_graph import FilterGraph, format_number

logger = logging.getLogger(__name__)


@dataclass
class VideoMeta:
    width: int
    height: int
    fps: float
    duration: float
    has_audio: bool


@dataclass
class RenderResult:
    output_path: Path
    elapsed_seconds: float
    args: list[str]


def tail(text: str, limit: int) -> str:
    text = text.strip()
    if limit <= 0 or len(text) <= limit:
        return text
    return text[-limit:]


def _run(
    cmd: list[str],
    error_cls: type[CompositorError] = CompositorError,
    tail_chars: int = 4000,
) -> subprocess.CompletedProcess[str]:
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as exc:
        raise error_cls(f"{cmd[0]} could not be started: {exc}") from exc
    if proc.returncode != 0:
        raise error_cls(f"{cmd[0]} exited with code {proc.returncode}\n{tail(proc.stderr or '', tail_chars)}")
    return proc


def ffmpeg_available(binary: str = "ffmpeg") -> bool:
    try:
        _run([binary, "-version"])
        return True
    except CompositorError:
        return False


def ffprobe_available(binary: str = "ffprobe") -> bool:
    try:
        _run([binary, "-version"])
        return True
    except CompositorError:
        return False


def _fps_value(rate: Optional[str]) -> float:
    if not rate:
        return 30.0
    if "/" in rate:
        n, d = rate.split("/", maxsplit=1)
        try:
            denom = float(d)
            if denom == 0:
                return 30.0
            return float(n) / denom
        except ValueError:
            return 30.0
    try:
        return float(rate)
    except ValueError:
        return 30.0


def parse_probe_payload(payload: dict) -> VideoMeta:
    streams = payload.get("streams", [])

    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    if not video_stream:
        raise DurationProbeFailedError("No video stream found")

    audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)
    # Container duration covers the whole file; stream duration is the fallback.
    raw_duration = payload.get("format", {}).get("duration") or video_stream.get("duration") or 0
    try:
        duration = float(raw_duration)
    except (TypeError, ValueError):
        duration = float("nan")

    return VideoMeta(
        width=int(video_stream.get("width") or 0),
        height=int(video_stream.get("height") or 0),
        fps=max(_fps_value(video_stream.get("avg_frame_rate") or video_stream.get("r_frame_rate")), 1.0),
        duration=duration,
        has_audio=audio_stream is not None,
    )


def probe_video(path: Path, ffprobe_bin: str = "ffprobe") -> VideoMeta:
    proc = _run(
        [
            ffprobe_bin,
            "-v",
            "error",
            "-show_streams",
            "-show_format",
            "-of",
            "json",
            str(path),
        ],
        DurationProbeFailedError,
    )
    try:
        payload = json.loads(proc.stdout)
    except json.JSONDecodeError as exc:
        raise DurationProbeFailedError(f"ffprobe returned invalid JSON for {path.name}") from exc
    return parse_probe_payload(payload)


def probe_duration(path: Path, ffprobe_bin: str = "ffprobe") -> VideoMeta:
    """Probe ``path`` and require a usable duration."""
    meta = probe_video(path, ffprobe_bin)
    if not math.isfinite(meta.duration) or meta.duration <= 0:
        raise DurationProbeFailedError(f"ffprobe reported unusable duration {meta.duration!r} for {path.name}")
    return meta


def download_asset(url: str, output_path: Path, timeout_s: float = 180, max_bytes: Optional[int] = None) -> Path:
    if not url.lower().startswith(("http://", "https://")):
        raise DownloadFailedError(f"Unsupported asset reference (expected http/https URL): {url}")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    try:
        with httpx.stream("GET", url, timeout=timeout_s, follow_redirects=True) as resp:
            if resp.status_code >= 400:
                raise DownloadFailedError(f"Download failed: {url} -> {resp.status_code}")
            with output_path.open("wb") as f:
                for chunk in resp.iter_bytes():
                    written += len(chunk)
                    if max_bytes is not None and written > max_bytes:
                        raise DownloadFailedError(f"Asset exceeds {max_bytes} bytes: {url}")
                    f.write(chunk)
    except httpx.HTTPError as exc:
        raise DownloadFailedError(f"Download failed: {url} -> {exc}") from exc

    if written == 0:
        raise DownloadFailedError(f"Downloaded asset is empty: {url}")
    return output_path


def build_render_args(
    primary: Path,
    showcases: Sequence[Path],
    graph: FilterGraph,
    output_path: Path,
    frame_rate: float,
    cfg: RenderConfig,
) -> list[str]:
    cmd = [cfg.ffmpeg_bin, "-y", "-i", str(primary)]
    for showcase in showcases:
        cmd += ["-i", str(showcase)]
    cmd += [
        "-filter_complex",
        graph.to_filter_complex(),
        "-map",
        f"[{graph.video_label}]",
        "-map",
        f"[{graph.audio_label}]",
        "-r",
        format_number(frame_rate),
        "-c:v",
        cfg.video_codec,
        "-preset",
        cfg.preset,
        "-crf",
        str(cfg.crf),
        "-pix_fmt",
        "yuv420p",
        "-c:a",
        "aac",
        "-b:a",
        cfg.audio_bitrate,
        "-movflags",
        "+faststart",
        str(output_path),
    ]
    return cmd


def render(
    primary: Path,
    showcases: Sequence[Path],
    graph: FilterGraph,
    output_path: Path,
    frame_rate: float,
    cfg: RenderConfig,
) -> RenderResult:
    if not 1 <= len(showcases) <= 2:
        raise ValueError(f"expected one or two showcase inputs, got {len(showcases)}")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    args = build_render_args(primary, showcases, graph, output_path, frame_rate, cfg)
    logger.debug("ffmpeg args: %s", args)

    started = time.monotonic()
    _run(args, RenderFailedError, cfg.stderr_tail_chars)
    if not output_path.exists():
        raise RenderFailedError(f"ffmpeg reported success but {output_path.name} was not written")
    return RenderResult(output_path=output_path, elapsed_seconds=time.monotonic() - started, args=args)
