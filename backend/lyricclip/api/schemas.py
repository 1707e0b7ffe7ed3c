"""Pydantic schemas for API requests and responses."""
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from lyricclip.config import settings
from lyricclip.models.render_job import AutomationPoint, RenderJobOptions, RenderSegment
from lyricclip.pipeline.segments import SegmentCandidate, SegmentSource


# =============================================================================
# Health
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    ffmpeg_available: bool
    ffprobe_available: bool
    transcription: str
    render_queue: str
    message: Optional[str] = None


# =============================================================================
# Upload Schemas
# =============================================================================

class StoredFileResponse(BaseModel):
    """Stored file summary (no filesystem path)."""
    id: str
    size: int
    original_name: str
    mime_type: str
    checksum: str


class UploadResponse(BaseModel):
    """Upload response."""
    id: str
    created_at: str
    duration: float
    video: StoredFileResponse
    audio: Optional[StoredFileResponse] = None


# =============================================================================
# Analysis & Segment Schemas
# =============================================================================

class AnalyzeAudioRequest(BaseModel):
    """Request to analyze an upload's audio."""
    upload_id: str
    target_duration: float = Field(30.0, gt=0, description="Clip length used to size candidates")


class SegmentCandidateSchema(BaseModel):
    """A candidate window with its features."""
    start: float = Field(..., ge=0)
    end: float
    energy: float = Field(..., ge=0, le=1)
    loudness: float
    confidence: float = Field(..., ge=0, le=1)

    def to_candidate(self) -> SegmentCandidate:
        return SegmentCandidate(
            start=self.start,
            end=self.end,
            energy=self.energy,
            loudness=self.loudness,
            confidence=self.confidence,
        )


class AnalysisResponse(BaseModel):
    """Audio analysis response."""
    id: str
    upload_id: str
    created_at: str
    updated_at: str
    duration: float
    sample_rate: int
    waveform: List[float]
    beats: List[float]
    tempo: float
    energy: float
    chroma: List[float]
    segments: List[SegmentCandidateSchema]


class SegmentSelectRequest(BaseModel):
    """Pick the best segment from explicit candidates or from an upload's analysis."""
    target_duration: float = Field(..., gt=0)
    candidates: Optional[List[SegmentCandidateSchema]] = None
    upload_id: Optional[str] = Field(None, description="Use this upload's analysis when no candidates are given")
    bounds: Optional[Tuple[float, float]] = Field(None, description="Allowed (min, max) duration")


class SegmentSelectionSchema(BaseModel):
    start: float
    end: float
    score: float
    source: SegmentSource


class SegmentSelectionResponse(BaseModel):
    """Winning segment, or none when nothing fits."""
    segment: Optional[SegmentSelectionSchema] = None


# =============================================================================
# Lyrics Schemas
# =============================================================================

class LyricsAlignRequest(BaseModel):
    """Request to align lyrics to an upload."""
    upload_id: str
    lyrics: str = ""


class AlignedLineSchema(BaseModel):
    text: str
    start: float
    end: float
    confidence: float


class AlignedWordSchema(AlignedLineSchema):
    pass


class AlignmentResponse(BaseModel):
    """Line and word timings."""
    lines: List[AlignedLineSchema]
    words: List[AlignedWordSchema]
    duration: float
    model: str


# =============================================================================
# Render Schemas
# =============================================================================

class AutomationPointSchema(BaseModel):
    at: float = Field(..., description="Seconds from segment start")
    gain_db: float


class RenderOptionsSchema(BaseModel):
    """Render framing and mix options."""
    resolution: str = Field("1080p", pattern="^(720p|1080p)$")
    aspect: str = Field("9:16", pattern="^(9:16|1:1|16:9)$")
    include_music: bool = True
    include_original: bool = True
    music_gain_db: float = 0.0
    ducking_db: float = Field(settings.default_ducking_db, ge=0)
    fade_ms: int = Field(settings.default_fade_ms, ge=0)
    music_automation: List[AutomationPointSchema] = Field(default_factory=list)

    def to_options(self) -> RenderJobOptions:
        return RenderJobOptions(
            resolution=self.resolution,
            aspect=self.aspect,
            include_music=self.include_music,
            include_original=self.include_original,
            music_gain_db=self.music_gain_db,
            ducking_db=self.ducking_db,
            fade_ms=self.fade_ms,
            music_automation=[AutomationPoint(at=p.at, gain_db=p.gain_db) for p in self.music_automation],
        )


class RenderSegmentSchema(BaseModel):
    start: float
    end: float

    def to_segment(self) -> RenderSegment:
        return RenderSegment(start=self.start, end=self.end)


class RenderRequest(BaseModel):
    """Request to render a segment of an upload."""
    upload_id: str
    segment: RenderSegmentSchema
    options: RenderOptionsSchema = Field(default_factory=RenderOptionsSchema)


class RenderOutputSchema(BaseModel):
    original_name: str
    checksum: str
    mime_type: str
    size: int
    download_url: Optional[str] = None


class RenderJobResponse(BaseModel):
    """Public view of a render job."""
    id: str
    upload_id: str
    created_at: str
    updated_at: str
    status: str
    segment: RenderSegmentSchema
    options: RenderOptionsSchema
    output: Optional[RenderOutputSchema] = None
    error: Optional[str] = None
    attempts: int
    progress: float
