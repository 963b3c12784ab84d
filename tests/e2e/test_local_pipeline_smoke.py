import os
import subprocess
from pathlib import Path

import pytest

from compositor.schemas.config import RenderConfig
from compositor.services.filter_graph import compile_graph
from compositor.services.media import ffmpeg_available, ffprobe_available, probe_duration, render
from compositor.services.schedule import compute_schedule

pytestmark = pytest.mark.skipif(
    os.environ.get("RUN_E2E") != "1" or not (ffmpeg_available() and ffprobe_available()),
    reason="Set RUN_E2E=1 and install ffmpeg/ffprobe to run e2e.",
)


def _make_clip(path: Path, seconds: int, source: str, with_audio: bool) -> Path:
    cmd = ["ffmpeg", "-y", "-f", "lavfi", "-i", f"{source}=size=360x640:rate=30:duration={seconds}"]
    if with_audio:
        cmd += ["-f", "lavfi", "-i", f"sine=frequency=440:duration={seconds}", "-c:a", "aac"]
    cmd += ["-c:v", "libx264", "-pix_fmt", "yuv420p", "-shortest", str(path)]
    subprocess.run(cmd, check=True, capture_output=True)
    return path


@pytest.mark.parametrize("with_audio", [True, False])
def test_render_composite_locally(tmp_path: Path, with_audio: bool) -> None:
    primary = _make_clip(tmp_path / "primary.mp4", 12, "testsrc2", with_audio)
    show1 = _make_clip(tmp_path / "show1.mp4", 4, "smptebars", False)
    show2 = _make_clip(tmp_path / "show2.mp4", 4, "rgbtestsrc", False)

    meta = probe_duration(primary)
    schedule = compute_schedule(meta.duration, 4, 2)
    graph = compile_graph(
        schedule, 0.5, 360, 640, 30, 2, 2, primary_has_audio=meta.has_audio, duration=meta.duration
    )
    graph.validate()

    result = render(primary, [show1, show2], graph, tmp_path / "final.mp4", 30, RenderConfig(preset="ultrafast"))

    out_meta = probe_duration(result.output_path)
    assert out_meta.has_audio
    assert out_meta.width == 360
    assert abs(out_meta.duration - meta.duration) < 0.5
