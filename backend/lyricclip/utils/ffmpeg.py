"""FFmpeg and ffprobe utilities."""
import asyncio
import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import numpy as np

from lyricclip.config import settings
from lyricclip.pipeline.filtergraph import MixGraph

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], Awaitable[None]]


@dataclass
class MediaInfo:
    """Media metadata container."""
    duration: Optional[float]
    sample_rate: Optional[int]
    has_audio: bool
    has_video: bool
    bit_rate: Optional[int]
    format_name: str


class FFmpegError(Exception):
    """FFmpeg related error."""
    pass


class ProbeError(FFmpegError):
    """ffprobe could not read the file."""
    pass


class DecodeError(FFmpegError):
    """PCM decoding failed."""
    pass


class EncoderError(FFmpegError):
    """Rendering failed."""
    pass


def check_ffmpeg_available() -> bool:
    """Check if ffmpeg is available."""
    return shutil.which(settings.ffmpeg_path) is not None


def check_ffprobe_available() -> bool:
    """Check if ffprobe is available."""
    return shutil.which(settings.ffprobe_path) is not None


async def probe_media(media_path: str | Path) -> MediaInfo:
    """
    Get media metadata using ffprobe.

    Args:
        media_path: Path to an audio or video file

    Returns:
        MediaInfo with whatever the container reports

    Raises:
        ProbeError: If ffprobe fails or its output cannot be parsed
    """
    media_path = Path(media_path)
    if not media_path.exists():
        raise ProbeError(f"Media file not found: {media_path}")

    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(media_path)
    ]

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
        stdout, stderr = await proc.communicate()

        if proc.returncode != 0:
            raise ProbeError(f"ffprobe failed: {stderr.decode(errors='ignore')}")

        data = json.loads(stdout.decode())

        audio_stream = None
        video_stream = None
        for stream in data.get("streams", []):
            if stream.get("codec_type") == "audio" and audio_stream is None:
                audio_stream = stream
            elif stream.get("codec_type") == "video" and video_stream is None:
                video_stream = stream

        fmt = data.get("format", {})
        duration = float(fmt.get("duration", 0) or 0)
        if duration <= 0 and audio_stream:
            duration = float(audio_stream.get("duration", 0) or 0)

        bit_rate = int(fmt.get("bit_rate", 0) or 0) or None
        if duration <= 0 and bit_rate:
            # Estimate from size when the container has no duration
            duration = media_path.stat().st_size * 8 / bit_rate

        sample_rate = None
        if audio_stream and audio_stream.get("sample_rate"):
            sample_rate = int(audio_stream["sample_rate"])

        return MediaInfo(
            duration=duration if duration > 0 else None,
            sample_rate=sample_rate,
            has_audio=audio_stream is not None,
            has_video=video_stream is not None,
            bit_rate=bit_rate,
            format_name=fmt.get("format_name", "unknown"),
        )
    except (json.JSONDecodeError, ValueError) as e:
        raise ProbeError(f"Failed to parse ffprobe output: {e}")
    except OSError as e:
        raise ProbeError(f"ffprobe error: {e}")


async def decode_pcm(media_path: str | Path, sample_rate: int = 16000) -> np.ndarray:
    """
    Decode a media file to mono 32-bit float PCM.

    Args:
        media_path: Path to an audio or video file
        sample_rate: Output sample rate

    Returns:
        float32 array of samples

    Raises:
        DecodeError: If ffmpeg exits with a non-zero status
    """
    cmd = [
        settings.ffmpeg_path,
        "-hide_banner",
        "-i", str(media_path),
        "-vn",  # No video
        "-ac", "1",  # Mono
        "-ar", str(sample_rate),
        "-f", "f32le",  # Raw PCM float 32-bit little-endian
        "pipe:1"
    ]

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
    except OSError as e:
        raise DecodeError(f"ffmpeg error: {e}")

    if proc.returncode != 0:
        raise DecodeError(
            f"ffmpeg exited with code {proc.returncode}: {stderr.decode(errors='ignore')[-500:]}"
        )

    usable = len(stdout) - len(stdout) % 4
    return np.frombuffer(stdout[:usable], dtype="<f4").astype(np.float32)


def build_render_command(
    video_path: str | Path,
    output_path: str | Path,
    start_time: float,
    duration: float,
    graph: MixGraph,
    music_path: Optional[str | Path] = None,
) -> List[str]:
    """ffmpeg argument list for a trimmed, mixed render."""
    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-ss", f"{start_time:.3f}",
        "-t", f"{duration:.3f}",
        "-i", str(video_path),
    ]
    if music_path is not None:
        cmd += [
            "-ss", f"{start_time:.3f}",
            "-t", f"{duration:.3f}",
            "-i", str(music_path),
        ]

    cmd += [
        "-filter_complex", graph.filter_complex,
        "-map", f"[{graph.video_label}]",
    ]
    if graph.audio_label is not None:
        cmd += [
            "-map", f"[{graph.audio_label}]",
            "-c:a", settings.export_audio_codec,
            "-b:a", settings.export_audio_bitrate,
        ]
    else:
        cmd += ["-an"]

    cmd += [
        "-c:v", settings.export_video_codec,
        "-preset", settings.export_video_preset,
        "-crf", str(settings.export_video_crf),
        "-movflags", "+faststart",
        "-progress", "pipe:1",
        "-nostats",
        str(output_path)
    ]
    return cmd


def parse_progress_line(line: str, duration: float) -> Optional[float]:
    """Fraction complete from an `-progress` line, if it carries a time."""
    if duration <= 0 or not line.startswith("out_time_ms="):
        return None
    try:
        out_time_us = int(line.split("=", 1)[1])
    except (ValueError, IndexError):
        return None
    return min(1.0, max(0.0, out_time_us / 1_000_000 / duration))


async def render_mix(
    video_path: str | Path,
    output_path: str | Path,
    start_time: float,
    duration: float,
    graph: MixGraph,
    music_path: Optional[str | Path] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> Path:
    """
    Render a trimmed window of the video with the given filter graph.

    Args:
        video_path: Source video (input 0)
        output_path: Path for output file
        start_time: Window start in seconds
        duration: Window length in seconds
        graph: Filter graph from build_mix_graph
        music_path: Optional music track (input 1)
        progress_callback: Optional async callback(fraction: float)

    Returns:
        Path to the rendered file

    Raises:
        EncoderError: If ffmpeg cannot be started or fails
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = build_render_command(video_path, output_path, start_time, duration, graph, music_path)
    logger.debug(f"Render command: {' '.join(cmd)}")

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise EncoderError(f"Failed to start ffmpeg: {e}")

    # Drain stderr concurrently so a chatty encoder cannot block on a full pipe
    stderr_task = asyncio.create_task(proc.stderr.read())

    try:
        last_progress = 0.0
        while True:
            line = await proc.stdout.readline()
            if not line:
                break

            line_str = line.decode("utf-8", errors="ignore").strip()
            progress = parse_progress_line(line_str, duration)
            if progress_callback and progress is not None and progress - last_progress >= 0.01:
                await progress_callback(progress)
                last_progress = progress

        await proc.wait()
        stderr = await stderr_task
    finally:
        # Never leave an encoder running behind a failed or cancelled render
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        if not stderr_task.done():
            stderr_task.cancel()

    if proc.returncode != 0:
        message = stderr.decode(errors="ignore").strip().splitlines()
        tail = message[-1] if message else f"exit code {proc.returncode}"
        raise EncoderError(f"Render failed: {tail}")

    return output_path
