"""
Pydantic models, enums and policy constants for the generation pipeline.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


# ── Policy constants ─────────────────────────────────────────────────────────

IMAGE_GENERATION_COST = 5
VIDEO_GENERATION_COST = 10

DEFAULT_PROJECT_NAME = "New Project"
DEFAULT_ASPECT_RATIO = "9:16"
DEFAULT_TARGET_LENGTH = 30  # seconds

MIN_SOURCE_IMAGES = 2


# ── Media ────────────────────────────────────────────────────────────────────

class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class SourceImage(BaseModel):
    """An uploaded file already spooled to local disk."""
    path: str
    mime_type: str
    filename: str = ""


class ModelImage(BaseModel):
    """A local image in an encoding the image model accepts."""
    path: str
    mime_type: str


# ── Project State ────────────────────────────────────────────────────────────

class ProjectStatus(str, Enum):
    DRAFT = "DRAFT"
    GENERATING = "GENERATING"
    IMAGE_READY = "IMAGE_READY"
    VIDEO_READY = "VIDEO_READY"
    FAILED = "FAILED"


class ProjectResponse(BaseModel):
    id: str
    user_id: str
    name: str = DEFAULT_PROJECT_NAME
    product_name: str
    product_description: Optional[str] = None
    aspect_ratio: Optional[str] = None
    target_length: int = DEFAULT_TARGET_LENGTH
    user_prompt: Optional[str] = None
    uploaded_images: list[str] = Field(default_factory=list)
    generated_image: Optional[str] = None
    generated_video: Optional[str] = None
    is_generating: bool = False
    is_published: bool = False
    error: Optional[str] = None
    status: ProjectStatus = ProjectStatus.DRAFT
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ── API Request / Response Models ────────────────────────────────────────────

class ImageCompositeRequest(BaseModel):
    """Form fields accompanying the uploaded product and person photos."""
    product_name: Optional[str] = None
    name: str = DEFAULT_PROJECT_NAME
    product_description: Optional[str] = None
    aspect_ratio: Optional[str] = None
    user_prompt: Optional[str] = None
    target_length: int = DEFAULT_TARGET_LENGTH


class CreateProjectResponse(BaseModel):
    project_id: str


class CreateVideoRequest(BaseModel):
    project_id: str


class CreateVideoResponse(BaseModel):
    message: str = "Video generation completed successfully"
    video_url: str


class PublishRequest(BaseModel):
    is_published: bool = True


class ProjectListResponse(BaseModel):
    projects: list[ProjectResponse] = Field(default_factory=list)


class CreditsResponse(BaseModel):
    credits: int
