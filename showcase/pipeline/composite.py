"""
Image Composite Job: product photo + person photo → one e-commerce image.

Flow (credits are reserved before any external call and refunded on failure):
  1. Validate inputs, gate on balance, reserve IMAGE_GENERATION_COST
  2. Upload every source image (parallel, order preserved)
  3. Create the Project with is_generating=True
  4. Normalize the product and person photos (parallel)
  5. Gemini image call: both photos inline + composite instructions
  6. Upload the generated image and close out the Project
"""

import os
import asyncio
import logging
from typing import Optional

from .. import metrics
from ..gemini import GeminiClient
from .cleanup import TempFiles
from .credits import CreditLedger, CreditReservation
from .errors import PipelineError, BadRequest, PaymentRequired, InternalError
from .models import (
    ImageCompositeRequest,
    SourceImage,
    MediaKind,
    IMAGE_GENERATION_COST,
    DEFAULT_ASPECT_RATIO,
    MIN_SOURCE_IMAGES,
)
from .normalize import normalize_image
from .project_service import ProjectStore
from .storage import ObjectStorage

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

GEMINI_IMAGE_MODEL = os.getenv("GEMINI_IMAGE_MODEL", "gemini-3-pro-image-preview")

COMPOSITE_PROMPT = (
    "Combine the person and product into a realistic photo.\n"
    "Make the person naturally hold or use the product.\n"
    "Match lighting, shadows, scale and perspective.\n"
    "Make the person stand in professional studio lighting.\n"
    "Output ecommerce-quality photo realistic imagery.\n"
)


def build_composite_prompt(user_prompt: Optional[str]) -> str:
    return COMPOSITE_PROMPT + (user_prompt or "")


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


async def _gather_settled(*aws) -> list:
    """
    Like asyncio.gather, but waits for every awaitable to finish before
    re-raising the first failure, so no sibling is still touching a file
    the cleanup scope is about to delete.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


class ImageCompositeJob:
    def __init__(
        self,
        ledger: CreditLedger,
        projects: ProjectStore,
        storage: ObjectStorage,
        gemini: GeminiClient,
        model: str = GEMINI_IMAGE_MODEL,
    ):
        self.ledger = ledger
        self.projects = projects
        self.storage = storage
        self.gemini = gemini
        self.model = model

    async def run(
        self,
        user_id: str,
        request: ImageCompositeRequest,
        files: list[SourceImage],
    ) -> str:
        """
        Generate the composite image for a new Project.

        The uploaded files are owned by this call and deleted on every exit path.

        Returns:
            The new Project id.
        """
        with TempFiles(f.path for f in files) as temp_files, metrics.job_timer("image"):
            try:
                if len(files) < MIN_SOURCE_IMAGES or not request.product_name:
                    raise BadRequest("Please provide at least 2 images and product name")

                balance = await self.ledger.get_balance(user_id)
                if balance is None or balance < IMAGE_GENERATION_COST:
                    raise PaymentRequired("Not enough credits. Please purchase more credits.")

                reservation = await self.ledger.reserve(user_id, IMAGE_GENERATION_COST)
            except PipelineError as e:
                metrics.record_error("image", type(e).__name__, e.message, user_id)
                raise

            project_id: Optional[str] = None

            try:
                uploaded_images = await _gather_settled(*[
                    self.storage.upload_file(f.path, MediaKind.IMAGE, user_id, content_type=f.mime_type)
                    for f in files
                ])

                project = await self.projects.create(
                    user_id=user_id,
                    name=request.name,
                    product_name=request.product_name,
                    product_description=request.product_description,
                    aspect_ratio=request.aspect_ratio,
                    target_length=request.target_length,
                    user_prompt=request.user_prompt,
                    uploaded_images=uploaded_images,
                    is_generating=True,
                )
                project_id = project.id

                product_image, person_image = await _gather_settled(
                    normalize_image(files[0], temp_files),
                    normalize_image(files[1], temp_files),
                )
                product_bytes, person_bytes = await _gather_settled(
                    asyncio.to_thread(_read_file, product_image.path),
                    asyncio.to_thread(_read_file, person_image.path),
                )

                image_bytes, mime_type = await self.gemini.generate_image(
                    self.model,
                    images=[
                        (product_bytes, product_image.mime_type),
                        (person_bytes, person_image.mime_type),
                    ],
                    prompt=build_composite_prompt(request.user_prompt),
                    aspect_ratio=request.aspect_ratio or DEFAULT_ASPECT_RATIO,
                )

                image_url = await self.storage.upload_bytes(
                    image_bytes, mime_type, MediaKind.IMAGE, user_id
                )
                await self.projects.update(project_id, {
                    "generated_image": image_url,
                    "is_generating": False,
                })

                logger.info(f"Composite image ready for project {project_id}: {image_url}")
                return project_id

            except Exception as e:
                raise await self._fail(user_id, project_id, reservation, e)

    async def _fail(
        self,
        user_id: str,
        project_id: Optional[str],
        reservation: CreditReservation,
        error: Exception,
    ) -> PipelineError:
        """Annotate, refund and report. Returns the error to raise."""
        if not isinstance(error, PipelineError):
            logger.error(f"Image job failed unexpectedly for user {user_id}: {error}", exc_info=error)
            wrapped = InternalError(str(error) or type(error).__name__)
            wrapped.__cause__ = error
            error = wrapped
        else:
            logger.error(f"Image job failed for user {user_id}: {error.message}")

        if project_id:
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

        metrics.record_error("image", type(error).__name__, error.message, user_id, project_id or "")
        return error
