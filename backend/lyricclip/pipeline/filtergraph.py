"""FFmpeg filter graph construction for render mixdowns.

Builds the audio chain that mixes the original soundtrack with a music bed:
- Static music gain and optional piecewise-linear gain automation
- Sidechain ducking of the original audio keyed off the music
- Symmetric fade in/out on the final mix

and the video chain that scales and crops to the requested frame.
"""
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from lyricclip.models.render_job import AutomationPoint, RenderJobOptions

# Points closer together than this collapse into one
AUTOMATION_EPSILON = 0.001

# Sidechain compressor settings for ducking
DUCK_RATIO = 8
DUCK_ATTACK_MS = 20
DUCK_RELEASE_MS = 250

SHORT_SIDE = {
    "720p": 720,
    "1080p": 1080,
}

ASPECT_RATIOS = {
    "9:16": (9, 16),
    "1:1": (1, 1),
    "16:9": (16, 9),
}


@dataclass
class MixGraph:
    """A complete -filter_complex description and the labels to map."""
    filter_complex: str
    video_label: str
    audio_label: Optional[str]  # None renders a silent video


def db_to_gain(gain_db: float) -> float:
    """Convert decibels to a linear amplitude factor."""
    return 10 ** (gain_db / 20)


def _fmt_time(value: float) -> str:
    return f"{value:.3f}"


def _fmt_gain(value: float) -> str:
    return f"{value:.6f}"


def normalize_automation(points: Sequence[AutomationPoint]) -> List[Tuple[float, float]]:
    """
    Sorted (time, linear gain) pairs ready for expression building.

    Points with non-finite times or gains are dropped. A point within
    AUTOMATION_EPSILON of the previously kept point replaces it, so the
    later point of a near-duplicate pair wins.
    """
    finite = [
        p for p in points
        if math.isfinite(p.at) and math.isfinite(p.gain_db)
    ]
    ordered = sorted(finite, key=lambda p: p.at)

    kept: List[AutomationPoint] = []
    for point in ordered:
        if kept and abs(point.at - kept[-1].at) < AUTOMATION_EPSILON:
            kept[-1] = point
        else:
            kept.append(point)

    return [(p.at, db_to_gain(p.gain_db)) for p in kept]


def build_automation_expression(points: Sequence[AutomationPoint]) -> Optional[str]:
    """
    Build a time-varying gain expression for ffmpeg's `volume` filter.

    The gain holds the first point's value before it, ramps linearly between
    consecutive points and holds the last value afterwards, e.g.

        if(lt(t,0.000),1.000000,if(lt(t,1.200),1.000000+(-0.415677)*(t-0.000),0.501187))

    Returns None when there are no usable points.
    """
    pairs = normalize_automation(points)
    if not pairs:
        return None

    first_time, first_gain = pairs[0]
    last_gain = pairs[-1][1]

    # Innermost branch: hold the last gain
    tail = _fmt_gain(last_gain)
    for (start_time, start_gain), (end_time, end_gain) in reversed(list(zip(pairs, pairs[1:]))):
        slope = (end_gain - start_gain) / (end_time - start_time)
        ramp = f"{_fmt_gain(start_gain)}+({_fmt_gain(slope)})*(t-{_fmt_time(start_time)})"
        tail = f"if(lt(t,{_fmt_time(end_time)}),{ramp},{tail})"

    return f"if(lt(t,{_fmt_time(first_time)}),{_fmt_gain(first_gain)},{tail})"


def _round_even(value: float) -> int:
    """Round to the nearest even integer (libx264 needs even dimensions)."""
    rounded = int(round(value))
    return rounded if rounded % 2 == 0 else rounded + 1


def resolve_output_dimensions(resolution: str, aspect: str) -> Tuple[int, int]:
    """
    Output (width, height) for a resolution preset and aspect ratio.

    The resolution names the short side of the frame.
    """
    if resolution not in SHORT_SIDE:
        raise ValueError(f"Unsupported resolution: {resolution}")
    if aspect not in ASPECT_RATIOS:
        raise ValueError(f"Unsupported aspect ratio: {aspect}")

    short_side = SHORT_SIDE[resolution]
    ratio_w, ratio_h = ASPECT_RATIOS[aspect]
    if ratio_w <= ratio_h:
        return short_side, _round_even(short_side * ratio_h / ratio_w)
    return _round_even(short_side * ratio_w / ratio_h), short_side


def build_video_filter(width: int, height: int, label: str = "vout") -> str:
    """Scale to cover the frame, then center crop."""
    return (
        f"[0:v]scale={width}:{height}:force_original_aspect_ratio=increase,"
        f"crop={width}:{height},setsar=1[{label}]"
    )


def ducking_threshold(ducking_db: float) -> float:
    """Linear sidechaincompress threshold for -ducking_db dBFS."""
    return max(0.000976563, min(1.0, db_to_gain(-ducking_db)))


def build_music_chain(options: RenderJobOptions, input_label: str = "1:a", output_label: str = "music") -> str:
    """Gain (and automation) applied to the music input."""
    filters = [f"volume={options.music_gain_db:g}dB"]
    expression = build_automation_expression(options.music_automation)
    if expression is not None:
        filters.append(f"volume='{expression}':eval=frame")
    return f"[{input_label}]{','.join(filters)}[{output_label}]"


def build_fade_filter(fade_ms: int, duration: float) -> Optional[str]:
    """Symmetric afade in/out, or None when disabled."""
    if fade_ms <= 0 or duration <= 0:
        return None
    fade = min(fade_ms / 1000, duration / 2)
    out_start = max(0.0, duration - fade)
    return f"afade=t=in:st=0:d={fade:.3f},afade=t=out:st={out_start:.3f}:d={fade:.3f}"


def build_mix_graph(
    options: RenderJobOptions,
    duration: float,
    has_music: bool,
) -> MixGraph:
    """
    Build the full filter graph for a render.

    Input 0 is the video (with its original soundtrack), input 1 the music
    track when `has_music` is set.

    Args:
        options: Mix options of the render job
        duration: Length of the rendered window in seconds
        has_music: Whether a music input is present

    Returns:
        MixGraph with the filter_complex text and output labels
    """
    width, height = resolve_output_dimensions(options.resolution, options.aspect)
    parts = [build_video_filter(width, height)]

    use_music = has_music and options.include_music
    use_original = options.include_original
    mixed: Optional[str] = None

    if use_music and use_original:
        parts.append(build_music_chain(options))
        if options.ducking_db > 0:
            parts.append("[music]asplit=2[music_mix][music_key]")
            parts.append(
                f"[0:a][music_key]sidechaincompress="
                f"threshold={ducking_threshold(options.ducking_db):.6f}:"
                f"ratio={DUCK_RATIO}:attack={DUCK_ATTACK_MS}:release={DUCK_RELEASE_MS}[original]"
            )
            music_label = "music_mix"
        else:
            parts.append("[0:a]anull[original]")
            music_label = "music"
        parts.append(f"[original][{music_label}]amix=inputs=2:duration=first:dropout_transition=0[mixed]")
        mixed = "mixed"
    elif use_music:
        parts.append(build_music_chain(options, output_label="mixed"))
        mixed = "mixed"
    elif use_original:
        parts.append("[0:a]anull[mixed]")
        mixed = "mixed"

    audio_label = None
    if mixed is not None:
        fade = build_fade_filter(options.fade_ms, duration)
        if fade is not None:
            parts.append(f"[{mixed}]{fade}[aout]")
        else:
            parts.append(f"[{mixed}]anull[aout]")
        audio_label = "aout"

    return MixGraph(
        filter_complex=";".join(parts),
        video_label="vout",
        audio_label=audio_label,
    )
