"""Structured ffmpeg filter graph for showcase overlays.

The graph is kept as a list of nodes (input labels, a filter chain, output
labels) and only rendered to ``-filter_complex`` syntax at the very end, so the
compiler can be tested without running ffmpeg and no caller-provided text ever
reaches the filter string unescaped.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from compositor.core.constants import OVERLAY_WINDOW_EPSILON

ArgValue = Union[str, int, float, bool]

VIDEO_OUT = "vout"
AUDIO_OUT = "aout"
BASE_LABEL = "base"

TRACK_A = "A"
TRACK_B = "B"

NODE_BASE = "base"
NODE_AUDIO = "audio"
NODE_PREP = "prep"
NODE_SPLIT = "split"
NODE_SHIFT = "shift"
NODE_OVERLAY = "overlay"

_RAW_SOURCE = re.compile(r"^\d+:[va]$")
_SPECIAL_CHARS = set("\\':,;[]= ")


def format_number(value: float) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def _escape(value: ArgValue) -> str:
    if isinstance(value, (bool, int, float)):
        return format_number(value)
    text = str(value)
    if not any(ch in _SPECIAL_CHARS for ch in text):
        return text
    return "'" + text.replace("'", "'\\''") + "'"


@dataclass(frozen=True)
class Filter:
    name: str
    args: tuple[tuple[Optional[str], ArgValue], ...] = ()

    def render(self) -> str:
        if not self.args:
            return self.name
        parts = [_escape(value) if key is None else f"{key}={_escape(value)}" for key, value in self.args]
        return f"{self.name}={':'.join(parts)}"


def filt(name: str, *positional: ArgValue, **named: ArgValue) -> Filter:
    args: list[tuple[Optional[str], ArgValue]] = [(None, value) for value in positional]
    args.extend(named.items())
    return Filter(name=name, args=tuple(args))


@dataclass(frozen=True)
class GraphNode:
    kind: str
    inputs: tuple[str, ...]
    filters: tuple[Filter, ...]
    outputs: tuple[str, ...]

    def render(self) -> str:
        ins = "".join(f"[{label}]" for label in self.inputs)
        outs = "".join(f"[{label}]" for label in self.outputs)
        return f"{ins}{','.join(f.render() for f in self.filters)}{outs}"


@dataclass(frozen=True)
class FilterGraph:
    nodes: tuple[GraphNode, ...]
    video_label: str = VIDEO_OUT
    audio_label: str = AUDIO_OUT

    def nodes_of(self, kind: str) -> list[GraphNode]:
        return [node for node in self.nodes if node.kind == kind]

    def raw_sources(self) -> set[str]:
        return {label for node in self.nodes for label in node.inputs if _RAW_SOURCE.match(label)}

    def validate(self) -> None:
        """Raise ``ValueError`` unless every label is produced before use and consumed exactly once."""
        produced: set[str] = set()
        consumed: Counter[str] = Counter()
        for index, node in enumerate(self.nodes):
            for label in node.inputs:
                if _RAW_SOURCE.match(label):
                    continue
                if label not in produced:
                    raise ValueError(f"node {index} ({node.kind}) reads [{label}] before it is produced")
                consumed[label] += 1
            for label in node.outputs:
                if label in produced:
                    raise ValueError(f"label [{label}] is produced twice")
                produced.add(label)

        terminals = {self.video_label, self.audio_label}
        missing = terminals - produced
        if missing:
            raise ValueError(f"terminal label(s) never produced: {sorted(missing)}")
        for label in produced - terminals:
            if consumed[label] != 1:
                raise ValueError(f"label [{label}] consumed {consumed[label]} times, expected 1")
        for label in terminals:
            if consumed[label]:
                raise ValueError(f"terminal label [{label}] must not feed another node")

    def to_filter_complex(self) -> str:
        return ";".join(node.render() for node in self.nodes)


def track_for_slot(index: int) -> str:
    return TRACK_A if index % 2 == 0 else TRACK_B


def _geometry_filters(width: int, height: int, frame_rate: float, pixel_format: str) -> list[Filter]:
    return [
        filt("scale", width, height),
        filt("setsar", 1),
        filt("fps", frame_rate),
        filt("format", pixel_format),
    ]


def _audio_node(primary_has_audio: bool, duration: Optional[float]) -> GraphNode:
    if primary_has_audio:
        return GraphNode(NODE_AUDIO, ("0:a",), (filt("anull"),), (AUDIO_OUT,))
    if duration is None:
        raise ValueError("duration is required to synthesize silence for a primary without audio")
    return GraphNode(
        NODE_AUDIO,
        (),
        (
            filt("anullsrc", channel_layout="stereo", sample_rate=48000),
            filt("atrim", end=duration),
        ),
        (AUDIO_OUT,),
    )


def _prep_node(track: str, source: str, fade_sec: float, width: int, height: int, frame_rate: float, insert_len: float) -> GraphNode:
    chain = _geometry_filters(width, height, frame_rate, "rgba")
    chain.append(filt("trim", start=0, end=insert_len))
    chain.append(filt("setpts", "PTS-STARTPTS"))
    if fade_sec > 0:
        chain.append(filt("fade", t="in", st=0, d=fade_sec, alpha=1))
        chain.append(filt("fade", t="out", st=max(0.0, insert_len - fade_sec), d=fade_sec, alpha=1))
    return GraphNode(NODE_PREP, (source,), tuple(chain), (f"prep{track}",))


def compile_graph(
    schedule: Sequence[float],
    fade_sec: float,
    width: int,
    height: int,
    frame_rate: float,
    insert_len: float,
    source_count: int,
    *,
    primary_has_audio: bool = True,
    duration: Optional[float] = None,
) -> FilterGraph:
    """Compile an overlay schedule into a filter graph.

    Inputs are ``0`` (primary), ``1`` (showcase A) and, when ``source_count`` is 2,
    ``2`` (showcase B). With a single showcase source track B re-reads input 1.
    Slots alternate A, B, A, ... by index.
    """
    if not schedule:
        raise ValueError("schedule must contain at least one insertion point")
    if source_count not in (1, 2):
        raise ValueError(f"source_count must be 1 or 2, got {source_count}")

    nodes: list[GraphNode] = [
        GraphNode(NODE_BASE, ("0:v",), tuple(_geometry_filters(width, height, frame_rate, "yuv420p")), (BASE_LABEL,)),
        _audio_node(primary_has_audio, duration),
    ]

    sources = {TRACK_A: "1:v", TRACK_B: "2:v" if source_count == 2 else "1:v"}
    slot_labels: dict[int, str] = {}
    for track in (TRACK_A, TRACK_B):
        slots = [index for index in range(len(schedule)) if track_for_slot(index) == track]
        if not slots:
            continue

        prep = _prep_node(track, sources[track], fade_sec, width, height, frame_rate, insert_len)
        nodes.append(prep)
        prepared = prep.outputs[0]

        # A filter output can feed only one consumer, so reused overlays are split.
        if len(slots) == 1:
            copies = [prepared]
        else:
            copies = [f"{prepared}{n}" for n in range(len(slots))]
            nodes.append(GraphNode(NODE_SPLIT, (prepared,), (filt("split", len(slots)),), tuple(copies)))

        for index, copy in zip(slots, copies):
            label = f"slot{index}"
            start = format_number(schedule[index])
            nodes.append(GraphNode(NODE_SHIFT, (copy,), (filt("setpts", f"PTS+{start}/TB"),), (label,)))
            slot_labels[index] = label

    current = BASE_LABEL
    last = len(schedule) - 1
    for index, start in enumerate(schedule):
        end = start + insert_len - OVERLAY_WINDOW_EPSILON
        enable = f"between(t,{format_number(start)},{format_number(end)})"
        output = VIDEO_OUT if index == last else f"ov{index}"
        nodes.append(
            GraphNode(
                NODE_OVERLAY,
                (current, slot_labels[index]),
                (filt("overlay", eof_action="pass", enable=enable),),
                (output,),
            )
        )
        current = output

    return FilterGraph(nodes=tuple(nodes))
