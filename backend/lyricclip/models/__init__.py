# Models module
from lyricclip.models.record import Record
from lyricclip.models.upload import StoredFile, StoredUpload
from lyricclip.models.analysis import AudioAnalysis
from lyricclip.models.lyrics import LyricModel, LyricTranscript
from lyricclip.models.render_job import (
    AutomationPoint,
    RenderJobManifest,
    RenderJobOptions,
    RenderJobStatus,
    RenderSegment,
)

__all__ = [
    "Record",
    "StoredFile",
    "StoredUpload",
    "AudioAnalysis",
    "LyricModel",
    "LyricTranscript",
    "AutomationPoint",
    "RenderJobManifest",
    "RenderJobOptions",
    "RenderJobStatus",
    "RenderSegment",
]
