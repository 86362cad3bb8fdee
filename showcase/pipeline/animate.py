"""
Video Extension Job: composite image → product showcase video via Veo.

Animates a Project's generated image:
  - image:  the Project's generated_image (fetched from object storage)
  - prompt: product showcase template with the product name and description

The Veo long-running operation is polled every POLL_INTERVAL seconds, at most
MAX_POLL_ATTEMPTS times; the finished video is downloaded to VIDEO_DIR,
re-uploaded to object storage, and the local copy is removed.
"""

import os
import time
import asyncio
import logging
import mimetypes
import tempfile
from typing import Callable, Optional

from .. import metrics
from ..veo import VeoClient, generated_video_uri
from .cleanup import TempFiles
from .credits import CreditLedger, CreditReservation
from .errors import (
    PipelineError,
    PaymentRequired,
    NotFound,
    Conflict,
    PreconditionFailed,
    UpstreamError,
    GenerationTimedOut,
    InternalError,
)
from .models import (
    MediaKind,
    ProjectResponse,
    VIDEO_GENERATION_COST,
    DEFAULT_ASPECT_RATIO,
    DEFAULT_TARGET_LENGTH,
)
from .project_service import ProjectStore
from .storage import ObjectStorage

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

VEO_MODEL = os.getenv("VEO_MODEL", "veo-3.1-generate-preview")
VIDEO_DIR = os.getenv("VIDEO_DIR", os.path.join(tempfile.gettempdir(), "showcase-videos"))

POLL_INTERVAL = 10  # seconds
MAX_POLL_ATTEMPTS = 90  # 15 minutes max

DEFAULT_FAILURE_MESSAGE = "Video generation failed"
CELEBRITY_MESSAGE = (
    "The AI detected a celebrity or recognizable person in the image. "
    "Please try with a different person's photo or use a more generic model image."
)


def build_video_prompt(product_name: str, product_description: Optional[str] = None) -> str:
    details = f"Product details: {product_description}. " if product_description else ""
    return (
        f"A professional product showcase video. "
        f"The person is displaying and presenting the {product_name}. "
        f"{details}"
        f"Smooth camera movement, natural presentation style, commercial quality lighting."
    )


# ── Failure message extraction ───────────────────────────────────────────────

def _content_filter_reason(operation: dict) -> Optional[str]:
    response = operation.get("response")
    if not isinstance(response, dict):
        return None
    for container in (response.get("generateVideoResponse") or {}, response):
        reasons = container.get("raiMediaFilteredReasons") or []
        if reasons:
            return reasons[0]
    return None


def _response_error(operation: dict) -> Optional[str]:
    response = operation.get("response")
    if not isinstance(response, dict):
        return None
    return (response.get("error") or {}).get("message")


def _operation_error(operation: dict) -> Optional[str]:
    return (operation.get("error") or {}).get("message")


def _string_response(operation: dict) -> Optional[str]:
    response = operation.get("response")
    return response if isinstance(response, str) and response else None


# Highest precedence first
FAILURE_MESSAGE_EXTRACTORS: tuple[Callable[[dict], Optional[str]], ...] = (
    _content_filter_reason,
    _response_error,
    _operation_error,
    _string_response,
)


def friendly_failure_message(message: str) -> str:
    lowered = message.lower()
    if "celebrity" in lowered or "likeness" in lowered:
        return CELEBRITY_MESSAGE
    return message


def failure_message(operation: dict) -> str:
    """User-facing message for a finished operation with no video."""
    for extract in FAILURE_MESSAGE_EXTRACTORS:
        message = extract(operation)
        if message:
            return friendly_failure_message(message)
    return DEFAULT_FAILURE_MESSAGE


# ═════════════════════════════════════════════════════════════════════════════
# Job
# ═════════════════════════════════════════════════════════════════════════════

class VideoExtensionJob:
    def __init__(
        self,
        ledger: CreditLedger,
        projects: ProjectStore,
        storage: ObjectStorage,
        veo: VeoClient,
        model: str = VEO_MODEL,
        video_dir: str = VIDEO_DIR,
        poll_interval: float = POLL_INTERVAL,
        max_poll_attempts: int = MAX_POLL_ATTEMPTS,
    ):
        self.ledger = ledger
        self.projects = projects
        self.storage = storage
        self.veo = veo
        self.model = model
        self.video_dir = video_dir
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts

    async def run(self, user_id: str, project_id: str) -> str:
        """
        Generate and store the showcase video for a Project.

        Returns:
            Public URL of the generated video.
        """
        with TempFiles() as temp_files, metrics.job_timer("video"):
            try:
                balance = await self.ledger.get_balance(user_id)
                if balance is None or balance < VIDEO_GENERATION_COST:
                    raise PaymentRequired("Not enough credits. Please purchase more credits.")

                reservation = await self.ledger.reserve(user_id, VIDEO_GENERATION_COST)
            except PipelineError as e:
                metrics.record_error("video", type(e).__name__, e.message, user_id, project_id)
                raise

            claimed = False

            try:
                project = await self._load_startable(project_id, user_id)

                if not await self.projects.claim_for_generation(project_id, user_id):
                    raise Conflict("Generation already in progress")
                claimed = True

                video_url = await self._generate(user_id, project, temp_files)

                await self.projects.update(project_id, {
                    "generated_video": video_url,
                    "is_generating": False,
                })
                logger.info(f"Showcase video ready for project {project_id}: {video_url}")
                return video_url

            except Exception as e:
                raise await self._fail(user_id, project_id, reservation, claimed, e)

    async def _load_startable(self, project_id: str, user_id: str) -> ProjectResponse:
        project = await self.projects.find_by_id(project_id, user_id)
        if project is None:
            raise NotFound("Project not found")
        if project.is_generating:
            raise Conflict("Generation already in progress")
        if project.generated_video:
            raise Conflict("Video already generated")
        if not project.generated_image:
            raise PreconditionFailed("No generated image found for the project")
        return project

    async def _generate(
        self,
        user_id: str,
        project: ProjectResponse,
        temp_files: TempFiles,
    ) -> str:
        image_bytes = await self.storage.download_bytes(project.generated_image)
        image_mime, _ = mimetypes.guess_type(project.generated_image)

        operation = await self.veo.generate_videos(
            self.model,
            prompt=build_video_prompt(project.product_name, project.product_description),
            image_bytes=image_bytes,
            image_mime_type=image_mime or "image/png",
            aspect_ratio=project.aspect_ratio or DEFAULT_ASPECT_RATIO,
            duration_seconds=project.target_length or DEFAULT_TARGET_LENGTH,
        )
        operation = await self._wait(operation)

        uri = generated_video_uri(operation)
        if not uri:
            logger.error(f"Veo finished without a video: {operation}")
            raise UpstreamError(failure_message(operation))

        os.makedirs(self.video_dir, exist_ok=True)
        local_path = temp_files.register(
            os.path.join(self.video_dir, f"{user_id}-{int(time.time() * 1000)}.mp4")
        )
        await self.veo.download(uri, local_path)

        return await self.storage.upload_file(
            local_path, MediaKind.VIDEO, user_id, content_type="video/mp4"
        )

    async def _wait(self, operation: dict) -> dict:
        """Poll until the operation is done or the poll budget runs out."""
        for attempt in range(self.max_poll_attempts):
            if operation.get("done"):
                return operation
            await asyncio.sleep(self.poll_interval)
            operation = await self.veo.get_operation(operation)
            logger.info(f"Veo poll #{attempt + 1}: done={bool(operation.get('done'))}")

        if operation.get("done"):
            return operation
        raise GenerationTimedOut(
            f"Video generation timed out after {self.max_poll_attempts * self.poll_interval:g}s"
        )

    async def _fail(
        self,
        user_id: str,
        project_id: str,
        reservation: CreditReservation,
        claimed: bool,
        error: Exception,
    ) -> PipelineError:
        """Refund, annotate a claimed project, report. Returns the error to raise."""
        if not isinstance(error, PipelineError):
            logger.error(f"Video job failed unexpectedly for project {project_id}: {error}", exc_info=error)
            wrapped = InternalError(str(error) or type(error).__name__)
            wrapped.__cause__ = error
            error = wrapped
        else:
            logger.error(f"Video job failed for project {project_id}: {error.message}")

        # Rejections before the claim leave the Project untouched
        if claimed:
            try:
                await self.projects.update(project_id, {
                    "is_generating": False,
                    "error": error.message,
                })
            except Exception as annotate_error:
                logger.error(f"Could not annotate project {project_id}: {annotate_error}")

        try:
            await self.ledger.refund(reservation)
        except Exception as refund_error:
            logger.error(
                f"Refund of {reservation.amount} credit(s) for user {user_id} failed: {refund_error}",
                exc_info=True,
            )

        metrics.record_error("video", type(error).__name__, error.message, user_id, project_id)
        return error
