"""
FastAPI routes for the showcase pipeline.

Project Endpoints:
  POST   /api/projects                Upload photos → composite image (5 credits)
  POST   /api/projects/video          Composite image → showcase video (10 credits)
  GET    /api/projects                List caller's projects
  GET    /api/projects/published      Public gallery (no auth)
  GET    /api/projects/{id}           Get project
  DELETE /api/projects/{id}           Delete project
  POST   /api/projects/{id}/publish   Publish / unpublish

User Endpoints:
  GET    /api/user/credits            Caller's credit balance
"""

import os
import logging
import mimetypes
import tempfile
from typing import NoReturn, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from .deps import get_current_user_id, get_service
from .errors import PipelineError
from .models import (
    ImageCompositeRequest,
    SourceImage,
    ProjectResponse,
    CreateProjectResponse,
    CreateVideoRequest,
    CreateVideoResponse,
    PublishRequest,
    ProjectListResponse,
    CreditsResponse,
    DEFAULT_PROJECT_NAME,
    DEFAULT_TARGET_LENGTH,
)
from .orchestrator import GenerationService

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(tempfile.gettempdir(), "showcase-uploads"))


def _raise_http(e: Exception, action: str) -> NoReturn:
    if isinstance(e, PipelineError):
        raise HTTPException(status_code=e.status_code, detail=e.message)
    logger.error(f"{action} failed: {e}", exc_info=True)
    raise HTTPException(status_code=500, detail=str(e))


async def _spool_upload(upload: UploadFile) -> SourceImage:
    """Write an upload to UPLOAD_DIR. The job that receives it deletes it."""
    suffix = os.path.splitext(upload.filename or "")[1]
    mime_type = upload.content_type or mimetypes.guess_type(upload.filename or "")[0] or ""

    os.makedirs(UPLOAD_DIR, exist_ok=True)
    fd, path = tempfile.mkstemp(suffix=suffix, dir=UPLOAD_DIR)
    with os.fdopen(fd, "wb") as f:
        while chunk := await upload.read(1024 * 1024):
            f.write(chunk)

    return SourceImage(path=path, mime_type=mime_type, filename=upload.filename or "")


def _discard(files: list[SourceImage]) -> None:
    for f in files:
        if os.path.exists(f.path):
            os.remove(f.path)


# ═════════════════════════════════════════════════════════════════════════════
# Project Router
# ═════════════════════════════════════════════════════════════════════════════

project_router = APIRouter(prefix="/api/projects", tags=["projects"])


# ── A. Generation ────────────────────────────────────────────────────────────

@project_router.post("", response_model=CreateProjectResponse)
async def create_project(
    images: Optional[list[UploadFile]] = File(None),
    name: str = Form(DEFAULT_PROJECT_NAME),
    product_name: Optional[str] = Form(None),
    product_description: Optional[str] = Form(None),
    aspect_ratio: Optional[str] = Form(None),
    user_prompt: Optional[str] = Form(None),
    target_length: int = Form(DEFAULT_TARGET_LENGTH),
    user_id: str = Depends(get_current_user_id),
    service: GenerationService = Depends(get_service),
):
    """
    Upload the product photo and the person photo (in that order) and
    generate the composite image.

    Errors:
      - 400: Fewer than 2 images or no product name
      - 402: Not enough credits
      - 502: Image model failure
    """
    files: list[SourceImage] = []
    try:
        for upload in images or []:
            files.append(await _spool_upload(upload))
    except Exception as e:
        _discard(files)
        _raise_http(e, "Upload spooling")

    request = ImageCompositeRequest(
        name=name or DEFAULT_PROJECT_NAME,
        product_name=product_name,
        product_description=product_description,
        aspect_ratio=aspect_ratio,
        user_prompt=user_prompt,
        target_length=target_length,
    )

    try:
        project_id = await service.create_project(user_id, request, files)
    except Exception as e:
        _raise_http(e, "Project creation")

    return CreateProjectResponse(project_id=project_id)


@project_router.post("/video", response_model=CreateVideoResponse)
async def create_video(
    body: CreateVideoRequest,
    user_id: str = Depends(get_current_user_id),
    service: GenerationService = Depends(get_service),
):
    """
    Generate the showcase video from the project's composite image.

    Errors:
      - 402: Not enough credits
      - 404: Project not found
      - 409: Generation in progress or video already generated
      - 412: No composite image yet
      - 502/504: Video model failure or timeout
    """
    try:
        video_url = await service.create_video(user_id, body.project_id)
    except Exception as e:
        _raise_http(e, "Video generation")

    return CreateVideoResponse(video_url=video_url)


# ── B. Listing ───────────────────────────────────────────────────────────────

@project_router.get("", response_model=ProjectListResponse)
async def list_projects(
    user_id: str = Depends(get_current_user_id),
    service: GenerationService = Depends(get_service),
):
    try:
        projects = await service.list_projects(user_id)
    except Exception as e:
        _raise_http(e, "Project listing")
    return ProjectListResponse(projects=projects)


@project_router.get("/published", response_model=ProjectListResponse)
async def list_published(service: GenerationService = Depends(get_service)):
    try:
        projects = await service.list_published()
    except Exception as e:
        _raise_http(e, "Published listing")
    return ProjectListResponse(projects=projects)


# ── C. Single project ────────────────────────────────────────────────────────

@project_router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    service: GenerationService = Depends(get_service),
):
    try:
        return await service.get_project(project_id, user_id)
    except Exception as e:
        _raise_http(e, "Project fetch")


@project_router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    service: GenerationService = Depends(get_service),
):
    try:
        await service.delete_project(project_id, user_id)
    except Exception as e:
        _raise_http(e, "Project delete")
    return {"message": "Project deleted successfully"}


@project_router.post("/{project_id}/publish", response_model=ProjectResponse)
async def publish_project(
    project_id: str,
    body: PublishRequest,
    user_id: str = Depends(get_current_user_id),
    service: GenerationService = Depends(get_service),
):
    try:
        return await service.set_published(project_id, user_id, body.is_published)
    except Exception as e:
        _raise_http(e, "Publish toggle")


# ═════════════════════════════════════════════════════════════════════════════
# User Router
# ═════════════════════════════════════════════════════════════════════════════

user_router = APIRouter(prefix="/api/user", tags=["user"])


@user_router.get("/credits", response_model=CreditsResponse)
async def get_credits(
    user_id: str = Depends(get_current_user_id),
    service: GenerationService = Depends(get_service),
):
    try:
        credits = await service.get_credits(user_id)
    except Exception as e:
        _raise_http(e, "Credit lookup")
    return CreditsResponse(credits=credits)
