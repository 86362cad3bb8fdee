"""
GenerationService: the single entry point the HTTP layer talks to.

Wires the two generation stages and the project/credit reads together:
  Stage 1: Image Composite (Gemini image model), 5 credits
  Stage 2: Video Extension (Veo), 10 credits

Collaborators are built once at startup and passed in.
"""

import logging
from typing import Optional

from ..gemini import GeminiClient
from ..veo import VeoClient
from .animate import VideoExtensionJob
from .composite import ImageCompositeJob
from .credits import CreditLedger
from .errors import NotFound
from .models import ImageCompositeRequest, ProjectResponse, SourceImage
from .project_service import ProjectStore
from .storage import ObjectStorage

logger = logging.getLogger(__name__)


class GenerationService:
    """
    Usage:
        service = GenerationService(ledger, projects, storage, gemini, veo)

        project_id = await service.create_project(user_id, request, files)
        video_url = await service.create_video(user_id, project_id)
    """

    def __init__(
        self,
        ledger: CreditLedger,
        projects: ProjectStore,
        storage: ObjectStorage,
        gemini: GeminiClient,
        veo: VeoClient,
        image_job: Optional[ImageCompositeJob] = None,
        video_job: Optional[VideoExtensionJob] = None,
    ):
        self.ledger = ledger
        self.projects = projects
        self.image_job = image_job or ImageCompositeJob(ledger, projects, storage, gemini)
        self.video_job = video_job or VideoExtensionJob(ledger, projects, storage, veo)

    # ── Generation ───────────────────────────────────────────────────────

    async def create_project(
        self,
        user_id: str,
        request: ImageCompositeRequest,
        files: list[SourceImage],
    ) -> str:
        logger.info(f"Image composite requested by user {user_id} ({len(files)} file(s))")
        return await self.image_job.run(user_id, request, files)

    async def create_video(self, user_id: str, project_id: str) -> str:
        logger.info(f"Video extension requested by user {user_id} for project {project_id}")
        return await self.video_job.run(user_id, project_id)

    # ── Projects ─────────────────────────────────────────────────────────

    async def get_project(self, project_id: str, user_id: str) -> ProjectResponse:
        project = await self.projects.find_by_id(project_id, user_id)
        if project is None:
            raise NotFound("Project not found")
        return project

    async def list_projects(self, user_id: str) -> list[ProjectResponse]:
        return await self.projects.list_for_user(user_id)

    async def list_published(self) -> list[ProjectResponse]:
        return await self.projects.list_published()

    async def delete_project(self, project_id: str, user_id: str) -> None:
        if not await self.projects.delete(project_id, user_id):
            raise NotFound("Project not found")

    async def set_published(
        self,
        project_id: str,
        user_id: str,
        is_published: bool,
    ) -> ProjectResponse:
        project = await self.projects.set_published(project_id, user_id, is_published)
        if project is None:
            raise NotFound("Project not found")
        return project

    # ── Credits ──────────────────────────────────────────────────────────

    async def get_credits(self, user_id: str) -> int:
        balance = await self.ledger.get_balance(user_id)
        if balance is None:
            raise NotFound("User not found")
        return balance
