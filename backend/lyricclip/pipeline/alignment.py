"""Lyric alignment against audio.

Two strategies produce line and word timings:
- Transcript matching: lyric tokens are located in a word-level transcript
- Beat allocation: lines are laid out along the detected beat grid

Either result is then snapped onto the beat grid.
"""
import logging
import re
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

from .config import AnalysisConfig, DEFAULT_ANALYSIS_CONFIG

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s']|_")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class TranscriptWord:
    """One word from a transcription model."""
    text: str
    start: float
    end: float
    confidence: Optional[float] = None


@dataclass
class AlignedLyricLine:
    """A lyric line placed in time."""
    text: str
    start: float
    end: float
    confidence: float

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "start": self.start,
            "end": self.end,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AlignedLyricLine":
        return cls(
            text=data["text"],
            start=float(data["start"]),
            end=float(data["end"]),
            confidence=float(data["confidence"]),
        )


@dataclass
class AlignedLyricWord:
    """A lyric word placed in time.

    `line_index` ties the word to its owning line while alignment runs; it is
    not part of the serialized form.
    """
    text: str
    start: float
    end: float
    confidence: float
    line_index: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "start": self.start,
            "end": self.end,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AlignedLyricWord":
        return cls(
            text=data["text"],
            start=float(data["start"]),
            end=float(data["end"]),
            confidence=float(data["confidence"]),
        )


Alignment = Tuple[List[AlignedLyricLine], List[AlignedLyricWord]]


def split_lyric_lines(lyrics: str) -> List[str]:
    """Trimmed, non-empty lines of a lyrics text."""
    return [line.strip() for line in lyrics.splitlines() if line.strip()]


def sanitize(text: str) -> str:
    """Lowercase, drop punctuation except apostrophes, collapse whitespace."""
    cleaned = _PUNCTUATION.sub("", text.lower())
    return _WHITESPACE.sub(" ", cleaned).strip()


def tokenize(line: str) -> List[str]:
    """Normalized tokens of a line."""
    cleaned = sanitize(line)
    return cleaned.split(" ") if cleaned else []


def display_tokens(line: str) -> List[str]:
    """Whitespace tokens of a line that survive normalization, as written."""
    return [token for token in line.split() if sanitize(token)]


def find_token_match(words: Sequence[TranscriptWord], token: str, start_index: int) -> int:
    """
    Index of the first transcript word at or after `start_index` matching `token`.

    A match is substring containment in either direction after normalization.
    Returns -1 if nothing matches.
    """
    clean = sanitize(token)
    if not clean:
        return -1
    for i in range(max(0, start_index), len(words)):
        word = sanitize(words[i].text)
        if not word:
            continue
        if clean in word or word in clean:
            return i
    return -1


def closest_beat(time: float, beats: Sequence[float]) -> float:
    """Beat nearest to `time`; the earliest wins on equal distance."""
    if not beats:
        return time
    best = beats[0]
    best_distance = abs(time - best)
    for beat in beats:
        distance = abs(time - beat)
        if distance < best_distance:
            best = beat
            best_distance = distance
    return best


def next_beat(time: float, beats: Sequence[float]) -> float:
    """First beat at or after `time`, else the last beat."""
    if not beats:
        return time
    for beat in beats:
        if beat >= time:
            return beat
    return beats[-1]


def previous_beat(time: float, beats: Sequence[float]) -> float:
    """Latest beat at or before `time`, else 0."""
    prior = 0.0
    for beat in beats:
        if beat > time:
            break
        prior = beat
    return prior


def _average_confidence(words: Sequence[TranscriptWord]) -> Optional[float]:
    values = [w.confidence for w in words if w.confidence is not None]
    if not values:
        return None
    return sum(values) / len(values)


def align_with_transcript(
    lines: Sequence[str],
    words: Sequence[TranscriptWord],
    beats: Sequence[float],
    duration: float,
    config: AnalysisConfig = DEFAULT_ANALYSIS_CONFIG,
) -> Optional[Alignment]:
    """
    Place lyric lines by locating their first and last tokens in a transcript.

    Matching walks forward through the transcript with a cursor, so lines are
    matched in order. Returns None when no lyric token matched any transcript
    word, in which case the caller should use beat allocation instead.
    """
    if not words:
        return None

    aligned_lines: List[AlignedLyricLine] = []
    aligned_words: List[AlignedLyricWord] = []
    cursor = 0
    matched_any = False
    previous_end = 0.0

    for line in lines:
        tokens = tokenize(line)
        if not tokens:
            continue

        start_index = find_token_match(words, tokens[0], cursor)
        end_index = find_token_match(words, tokens[-1], start_index if start_index >= 0 else cursor)

        if start_index >= 0:
            start = words[start_index].start
        else:
            start = previous_beat(previous_end, beats)
        if end_index >= 0:
            end = words[end_index].end
        else:
            end = start + max(1.0, len(tokens) * config.seconds_per_token)

        if end_index >= 0:
            cursor = end_index + 1
        elif start_index >= 0:
            cursor = start_index + 1

        span_start = start_index if start_index >= 0 else end_index
        span_end = end_index if end_index >= 0 else start_index
        matched = list(words[span_start:span_end + 1]) if span_start >= 0 else []
        if matched:
            matched_any = True
        confidence = _average_confidence(matched)
        if confidence is None:
            confidence = config.transcript_default_confidence

        start = min(max(0.0, start), duration)
        end = max(start + config.min_line_span_sec, min(duration, end))
        line_index = len(aligned_lines)
        aligned_lines.append(AlignedLyricLine(text=line, start=start, end=end, confidence=confidence))
        previous_end = end

        for word in matched:
            word_start = min(max(word.start, start), end)
            word_end = min(max(word.end, word_start), end)
            aligned_words.append(AlignedLyricWord(
                text=word.text.strip(),
                start=word_start,
                end=word_end,
                confidence=word.confidence if word.confidence is not None else config.transcript_default_confidence,
                line_index=line_index,
            ))

    if not matched_any:
        logger.info("Transcript matched no lyric tokens")
        return None

    return aligned_lines, aligned_words


def _even_boundaries(duration: float, count: int) -> List[float]:
    if count <= 0:
        return []
    spacing = duration / count
    return [i * spacing for i in range(count)]


def subdivide_words(
    line: AlignedLyricLine,
    line_index: int,
    config: AnalysisConfig = DEFAULT_ANALYSIS_CONFIG,
) -> List[AlignedLyricWord]:
    """Split a line's span evenly across its tokens."""
    tokens = display_tokens(line.text)
    if not tokens:
        return []
    slot = (line.end - line.start) / len(tokens)
    words = []
    for k, token in enumerate(tokens):
        start = line.start + k * slot
        words.append(AlignedLyricWord(
            text=token,
            start=start,
            end=start + slot * config.word_slot_fill,
            confidence=config.beat_word_confidence,
            line_index=line_index,
        ))
    return words


def align_with_beats(
    lines: Sequence[str],
    beats: Sequence[float],
    duration: float,
    config: AnalysisConfig = DEFAULT_ANALYSIS_CONFIG,
) -> Alignment:
    """
    Lay lines out sequentially along the beat grid.

    Line i spans beats[i] to beats[i + 1]; once beats run out, lines fall
    back to an even split of the track. Without any beats the whole track is
    divided evenly.
    """
    kept = [line for line in lines if tokenize(line)]
    count = len(kept)
    if count == 0:
        return [], []

    grid = list(beats) if beats else _even_boundaries(duration, count)
    share = duration / count

    aligned_lines: List[AlignedLyricLine] = []
    aligned_words: List[AlignedLyricWord] = []
    for i, text in enumerate(kept):
        start = grid[i] if i < len(grid) else share * i
        if i + 1 < len(grid):
            end = grid[i + 1]
        else:
            end = min(duration, start + share)
        if end <= start:
            end = start + config.min_line_span_sec
        line = AlignedLyricLine(text=text, start=start, end=end, confidence=config.beat_line_confidence)
        aligned_lines.append(line)
        aligned_words.extend(subdivide_words(line, i, config))

    return aligned_lines, aligned_words


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def snap_to_beats(
    lines: Sequence[AlignedLyricLine],
    words: Sequence[AlignedLyricWord],
    beats: Sequence[float],
) -> Alignment:
    """
    Snap line boundaries onto the beat grid and carry words along.

    Each line starts on its nearest beat and ends on the first beat at or
    after its original end (the last beat if none). Words keep their relative
    position within the line and their duration, clipped to the snapped end.
    Snapping an already snapped alignment leaves it unchanged.
    """
    if not beats:
        return list(lines), list(words)

    snapped_lines: List[AlignedLyricLine] = []
    spans = []
    for line in lines:
        new_start = closest_beat(line.start, beats)
        new_end = max(new_start, next_beat(line.end, beats))
        snapped_lines.append(replace(line, start=new_start, end=new_end))
        spans.append((line.start, line.end, new_start, new_end))

    snapped_words: List[AlignedLyricWord] = []
    for word in words:
        if word.line_index is None or not 0 <= word.line_index < len(spans):
            snapped_words.append(word)
            continue
        old_start, old_end, new_start, new_end = spans[word.line_index]
        old_span = old_end - old_start
        new_span = new_end - new_start
        ratio = _clamp01((word.start - old_start) / old_span) if old_span > 0 else 0.0
        start = min(new_start + ratio * new_span, new_end)
        end = min(start + max(0.0, word.end - word.start), new_end)
        snapped_words.append(replace(word, start=start, end=end))

    return snapped_lines, snapped_words
