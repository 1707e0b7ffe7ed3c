"""Word-level transcription using faster-whisper.

The model is optional: it loads lazily on first use and, when it cannot be
loaded, the service reports itself unavailable and callers fall back to
beat-based alignment.
"""
import asyncio
import enum
import logging
from pathlib import Path
from typing import Any, Callable, List, Optional

from lyricclip.config import settings
from lyricclip.pipeline.alignment import TranscriptWord

logger = logging.getLogger(__name__)


class TranscriptionStatus(str, enum.Enum):
    UNKNOWN = "unknown"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class AlignmentTranscriptionError(Exception):
    """Transcription failed for a file."""
    pass


def _load_whisper_model(model_name: str, device: str, compute_type: str):
    from faster_whisper import WhisperModel

    return WhisperModel(model_name, device=device, compute_type=compute_type)


class TranscriptionService:
    """Lazily loaded faster-whisper model with an explicit availability state."""

    def __init__(
        self,
        enabled: bool = settings.enable_transcription,
        model_name: str = settings.transcription_model,
        device: str = settings.transcription_device,
        compute_type: str = settings.transcription_compute_type,
        model_factory: Optional[Callable[[str, str, str], Any]] = None,
    ):
        self.enabled = enabled
        self.model_name = model_name
        self.device = device
        self.compute_type = compute_type
        self._model_factory = model_factory or _load_whisper_model
        self._model = None
        self._status = TranscriptionStatus.UNKNOWN if enabled else TranscriptionStatus.UNAVAILABLE
        self._load_lock = asyncio.Lock()

    @property
    def status(self) -> TranscriptionStatus:
        return self._status

    @property
    def available(self) -> bool:
        return self._status == TranscriptionStatus.AVAILABLE

    async def ensure_loaded(self) -> bool:
        """
        Load the model if it has not been tried yet.

        Returns:
            True if transcription can be used
        """
        if self._status != TranscriptionStatus.UNKNOWN:
            return self.available

        async with self._load_lock:
            if self._status != TranscriptionStatus.UNKNOWN:
                return self.available
            try:
                logger.info(f"Loading transcription model {self.model_name} on {self.device}")
                self._model = await asyncio.to_thread(
                    self._model_factory, self.model_name, self.device, self.compute_type
                )
                self._status = TranscriptionStatus.AVAILABLE
            except Exception as e:
                logger.warning(f"Transcription unavailable, using beat alignment: {e}")
                self._model = None
                self._status = TranscriptionStatus.UNAVAILABLE
        return self.available

    def _transcribe_sync(self, path: Path) -> List[TranscriptWord]:
        segments, _info = self._model.transcribe(str(path), word_timestamps=True)
        words: List[TranscriptWord] = []
        for segment in segments:
            for w in segment.words or []:
                words.append(TranscriptWord(
                    text=w.word.strip(),
                    start=float(w.start),
                    end=float(w.end),
                    confidence=float(w.probability) if w.probability is not None else None,
                ))
        return words

    async def transcribe(self, path: str | Path) -> List[TranscriptWord]:
        """
        Transcribe a media file into timed words.

        Args:
            path: Local audio or video file

        Returns:
            Words in time order

        Raises:
            AlignmentTranscriptionError: If the model is unavailable or fails
        """
        if not await self.ensure_loaded():
            raise AlignmentTranscriptionError("Transcription model is not available")

        try:
            words = await asyncio.to_thread(self._transcribe_sync, Path(path))
        except Exception as e:
            raise AlignmentTranscriptionError(f"Transcription failed: {e}") from e

        logger.info(f"Transcribed {len(words)} words from {Path(path).name}")
        return words
