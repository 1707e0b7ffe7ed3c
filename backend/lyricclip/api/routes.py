"""API routes."""
import logging
import shutil
import uuid
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse

from lyricclip.config import settings
from lyricclip.container import ServiceContainer
from lyricclip.models.upload import StoredFile, StoredUpload
from lyricclip.pipeline.segments import SegmentSource, select_best_segment
from lyricclip.services.render_service import (
    InvalidJobStateError,
    OUTPUT_MIME_TYPE,
    RenderJobNotFoundError,
)
from lyricclip.services.storage_service import MissingMediaError
from lyricclip.utils.ffmpeg import DecodeError, check_ffmpeg_available, check_ffprobe_available
from lyricclip.api.schemas import (
    AlignmentResponse,
    AnalysisResponse,
    AnalyzeAudioRequest,
    HealthResponse,
    LyricsAlignRequest,
    RenderJobResponse,
    RenderRequest,
    SegmentSelectionResponse,
    SegmentSelectRequest,
    StoredFileResponse,
    UploadResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def get_services(request: Request) -> ServiceContainer:
    """Dependency returning the application's service container."""
    return request.app.state.services


def _file_to_response(stored: Optional[StoredFile]) -> Optional[StoredFileResponse]:
    if stored is None:
        return None
    return StoredFileResponse(
        id=stored.id,
        size=stored.size,
        original_name=stored.original_name,
        mime_type=stored.mime_type,
        checksum=stored.checksum,
    )


def _upload_to_response(upload: StoredUpload) -> UploadResponse:
    return UploadResponse(
        id=upload.id,
        created_at=upload.created_at,
        duration=upload.duration,
        video=_file_to_response(upload.video),
        audio=_file_to_response(upload.audio),
    )


async def _require_upload(services: ServiceContainer, upload_id: str) -> StoredUpload:
    upload = await services.storage.get_upload(upload_id)
    if not upload:
        raise HTTPException(status_code=404, detail="Upload not found")
    return upload


# =============================================================================
# Health & System
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(services: ServiceContainer = Depends(get_services)):
    """Check API health and dependencies."""
    ffmpeg_ok = check_ffmpeg_available()
    ffprobe_ok = check_ffprobe_available()
    all_ok = ffmpeg_ok and ffprobe_ok

    message = None
    if not all_ok:
        missing = []
        if not ffmpeg_ok:
            missing.append("ffmpeg")
        if not ffprobe_ok:
            missing.append("ffprobe")
        message = f"Missing dependencies: {', '.join(missing)}"

    return HealthResponse(
        status="healthy" if all_ok else "degraded",
        ffmpeg_available=ffmpeg_ok,
        ffprobe_available=ffprobe_ok,
        transcription=services.transcription.status.value,
        render_queue=type(services.scheduler.queue).__name__,
        message=message,
    )


# =============================================================================
# Uploads
# =============================================================================

@router.post("/uploads", response_model=UploadResponse)
async def create_upload(
    video: UploadFile = File(...),
    audio: Optional[UploadFile] = File(None),
    duration: float = Query(30.0, gt=0),
    services: ServiceContainer = Depends(get_services),
):
    """Upload a video and an optional separate music track."""
    temp_dir = settings.data_dir / "temp" / str(uuid.uuid4())
    temp_dir.mkdir(parents=True, exist_ok=True)

    try:
        video_path = temp_dir / Path(video.filename or "video.mp4").name
        with open(video_path, "wb") as f:
            shutil.copyfileobj(video.file, f)

        audio_path = None
        if audio is not None and audio.filename:
            audio_path = temp_dir / Path(audio.filename).name
            with open(audio_path, "wb") as f:
                shutil.copyfileobj(audio.file, f)

        upload = await services.storage.create_upload(video_path, duration, audio_path=audio_path)
        return _upload_to_response(upload)
    except MissingMediaError as e:
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


@router.get("/uploads", response_model=List[UploadResponse])
async def list_uploads(services: ServiceContainer = Depends(get_services)):
    """List uploads, newest first."""
    return [_upload_to_response(u) for u in await services.storage.list_uploads()]


@router.get("/uploads/{upload_id}", response_model=UploadResponse)
async def get_upload(upload_id: str, services: ServiceContainer = Depends(get_services)):
    """Get an upload by ID."""
    return _upload_to_response(await _require_upload(services, upload_id))


@router.delete("/uploads/{upload_id}")
async def delete_upload(upload_id: str, services: ServiceContainer = Depends(get_services)):
    """Delete an upload and everything cached for it."""
    if not await services.storage.delete_upload(upload_id):
        raise HTTPException(status_code=404, detail="Upload not found")
    return {"status": "deleted"}


# =============================================================================
# Analysis & Segments
# =============================================================================

@router.post("/analyze/audio", response_model=AnalysisResponse)
async def analyze_audio(
    request: AnalyzeAudioRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Analyze an upload's audio (cached per upload)."""
    upload = await _require_upload(services, request.upload_id)
    try:
        analysis = await services.analyzer.analyze(upload, request.target_duration)
    except MissingMediaError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DecodeError:
        logger.exception(f"Audio decode failed for upload {upload.id}")
        raise HTTPException(status_code=500, detail="Audio could not be decoded")
    return analysis.to_dict()


@router.post("/segments/select", response_model=SegmentSelectionResponse)
async def select_segment(
    request: SegmentSelectRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Pick the best segment from given candidates or from an upload's analysis."""
    if request.candidates is not None:
        candidates = [c.to_candidate() for c in request.candidates]
        source = SegmentSource.EXTERNAL
    elif request.upload_id:
        upload = await _require_upload(services, request.upload_id)
        try:
            analysis = await services.analyzer.analyze(upload, request.target_duration)
        except MissingMediaError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except DecodeError:
            logger.exception(f"Audio decode failed for upload {upload.id}")
            raise HTTPException(status_code=500, detail="Audio could not be decoded")
        candidates = analysis.segments
        source = SegmentSource.ANALYSIS
    else:
        raise HTTPException(status_code=400, detail="Provide candidates or an upload_id")

    try:
        result = select_best_segment(
            candidates,
            request.target_duration,
            bounds=request.bounds,
            source=source,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"segment": result.to_dict() if result else None}


# =============================================================================
# Lyrics
# =============================================================================

@router.post("/lyrics/align", response_model=AlignmentResponse)
async def align_lyrics(
    request: LyricsAlignRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Align lyrics to an upload's audio."""
    upload = await _require_upload(services, request.upload_id)
    try:
        result = await services.aligner.align(upload, request.lyrics)
    except MissingMediaError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DecodeError:
        logger.exception(f"Audio decode failed for upload {upload.id}")
        raise HTTPException(status_code=500, detail="Audio could not be decoded")
    return result.to_dict()


# =============================================================================
# Render Jobs
# =============================================================================

@router.post("/render", response_model=RenderJobResponse)
async def create_render(
    request: RenderRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Queue a render job."""
    await _require_upload(services, request.upload_id)
    try:
        manifest = await services.scheduler.enqueue(
            request.upload_id,
            request.segment.to_segment(),
            request.options.to_options(),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return await services.scheduler.get_job(manifest.id)


@router.get("/render", response_model=List[RenderJobResponse])
async def list_renders(services: ServiceContainer = Depends(get_services)):
    """List render jobs, newest first."""
    return await services.scheduler.list_jobs()


@router.get("/render/{job_id}", response_model=RenderJobResponse)
async def get_render(job_id: str, services: ServiceContainer = Depends(get_services)):
    """Get a render job."""
    job = await services.scheduler.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Render job not found")
    return job


@router.post("/render/{job_id}/retry", response_model=RenderJobResponse)
async def retry_render(job_id: str, services: ServiceContainer = Depends(get_services)):
    """Requeue a failed render job."""
    try:
        return await services.scheduler.retry(job_id)
    except RenderJobNotFoundError:
        raise HTTPException(status_code=404, detail="Render job not found")
    except InvalidJobStateError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/render/{job_id}/cancel", response_model=RenderJobResponse)
async def cancel_render(job_id: str, services: ServiceContainer = Depends(get_services)):
    """Cancel a queued or running render job."""
    try:
        return await services.scheduler.cancel(job_id)
    except RenderJobNotFoundError:
        raise HTTPException(status_code=404, detail="Render job not found")
    except InvalidJobStateError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/render/{job_id}/file")
async def get_render_file(job_id: str, services: ServiceContainer = Depends(get_services)):
    """Download a completed render."""
    try:
        path = await services.scheduler.output_path(job_id)
    except (RenderJobNotFoundError, MissingMediaError):
        raise HTTPException(status_code=404, detail="Render output not available")

    return FileResponse(
        path,
        media_type=OUTPUT_MIME_TYPE,
        filename=f"render-{job_id}.mp4",
    )
