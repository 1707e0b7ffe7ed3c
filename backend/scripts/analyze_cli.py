#!/usr/bin/env python3
"""
CLI tool to analyze a local audio or video file and emit JSON.

Runs audio feature extraction and segment selection without the server, and
optionally lays out a lyrics file along the detected beats.

Usage:
    python scripts/analyze_cli.py <media_path> [--target-duration 30] [--lyrics lyrics.txt] [--output-dir <dir>]

Example:
    python scripts/analyze_cli.py ~/Music/song.mp3 --lyrics ~/Music/song.txt --output-dir ./output
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from lyricclip.pipeline.alignment import align_with_beats, snap_to_beats, split_lyric_lines
from lyricclip.pipeline.audio_features import extract_features
from lyricclip.pipeline.config import AnalysisConfig
from lyricclip.pipeline.segments import SegmentSource, rank_candidates, select_best_segment
from lyricclip.utils.ffmpeg import ProbeError, decode_pcm, probe_media


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger(__name__)


async def analyze_file(
    media_path: Path,
    output_dir: Path,
    target_duration: float,
    lyrics_path: Optional[Path] = None,
    config: Optional[AnalysisConfig] = None,
):
    """
    Analyze a media file and write the results.

    Args:
        media_path: Path to an audio or video file
        output_dir: Directory for output files
        target_duration: Desired clip length in seconds
        lyrics_path: Optional lyrics text file to align along the beats
        config: Optional analysis config override
    """
    if not media_path.exists():
        raise FileNotFoundError(f"Media not found: {media_path}")

    config = config or AnalysisConfig()
    output_dir.mkdir(parents=True, exist_ok=True)

    logger.info(f"Analyzing: {media_path}")
    try:
        info = await probe_media(media_path)
        duration = info.duration or config.default_duration
    except ProbeError as e:
        logger.warning(f"Probe failed, assuming {config.default_duration:.0f}s: {e}")
        duration = config.default_duration

    samples = await decode_pcm(media_path, config.sample_rate)
    features = extract_features(samples, config.sample_rate, duration, target_duration, config)
    logger.info(
        f"Duration: {duration:.1f}s, tempo: {features.tempo:.0f} bpm, "
        f"{len(features.beats)} beats, energy: {features.energy:.3f}"
    )

    best = select_best_segment(features.segments, target_duration, source=SegmentSource.ANALYSIS)
    if best:
        logger.info(f"Best segment: {best.start:.1f}s - {best.end:.1f}s (score: {best.score:.3f})")
    else:
        logger.info("No segment candidate fits the target duration")

    ranked = rank_candidates(features.segments, target_duration)
    for candidate, score in ranked:
        logger.debug(f"  {candidate.start:.1f}s - {candidate.end:.1f}s: {score:.3f}")

    result = {
        "media_path": str(media_path),
        "duration": duration,
        "sample_rate": config.sample_rate,
        "tempo": features.tempo,
        "energy": features.energy,
        "beats": features.beats,
        "chroma": features.chroma,
        "waveform": features.waveform,
        "segments": [s.to_dict() for s in features.segments],
        "ranked_segments": [
            {**candidate.to_dict(), "score": score} for candidate, score in ranked
        ],
        "best_segment": best.to_dict() if best else None,
        "config": config.to_dict(),
    }

    if lyrics_path is not None:
        lines = split_lyric_lines(lyrics_path.read_text(encoding="utf-8"))
        aligned_lines, aligned_words = align_with_beats(lines, features.beats, duration, config)
        aligned_lines, aligned_words = snap_to_beats(aligned_lines, aligned_words, features.beats)
        result["lyrics"] = {
            "model": "beats",
            "lines": [line.to_dict() for line in aligned_lines],
            "words": [word.to_dict() for word in aligned_words],
        }
        logger.info(f"Aligned {len(aligned_lines)} lyric lines to the beat grid")

    output_file = output_dir / f"{media_path.stem}_analysis.json"
    with open(output_file, 'w') as f:
        json.dump(result, f, indent=2)
    logger.info(f"Analysis written to: {output_file}")


def main():
    parser = argparse.ArgumentParser(
        description="Analyze a media file with the LyricClip audio pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Analyze with a 30 second target clip (default)
    python scripts/analyze_cli.py song.mp3

    # Shorter clip, with lyrics laid out on the beat grid
    python scripts/analyze_cli.py song.mp3 --target-duration 15 --lyrics song.txt
        """
    )

    parser.add_argument(
        "media_path",
        type=Path,
        help="Path to audio or video file to analyze"
    )

    parser.add_argument(
        "--target-duration", "-t",
        type=float,
        default=30.0,
        help="Target clip duration in seconds (default: 30)"
    )

    parser.add_argument(
        "--lyrics", "-l",
        type=Path,
        default=None,
        help="Lyrics text file, one line per lyric line"
    )

    parser.add_argument(
        "--output-dir", "-o",
        type=Path,
        default=Path("./lyricclip_output"),
        help="Output directory (default: ./lyricclip_output)"
    )

    args = parser.parse_args()
    if args.target_duration <= 0:
        parser.error("--target-duration must be positive")

    try:
        asyncio.run(analyze_file(
            media_path=args.media_path,
            output_dir=args.output_dir,
            target_duration=args.target_duration,
            lyrics_path=args.lyrics,
        ))
    except FileNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)
    except Exception as e:
        logger.exception(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
