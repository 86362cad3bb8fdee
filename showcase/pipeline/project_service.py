"""
Project Record Store.

Durable lifecycle record of a generation project on the `projects` table:
  - Create (with is_generating=True, before the first model call)
  - Load / list / delete, always scoped to the owner
  - Atomic claim of the is_generating flag for the video stage
  - Publish toggle

All mutations go through the Supabase service role client injected at startup.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from supabase import Client

from .models import (
    ProjectStatus,
    ProjectResponse,
    DEFAULT_PROJECT_NAME,
    DEFAULT_TARGET_LENGTH,
)

logger = logging.getLogger(__name__)

PROJECTS_TABLE = "projects"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _derive_status(row: dict) -> ProjectStatus:
    if row.get("is_generating"):
        return ProjectStatus.GENERATING
    if row.get("error") and not row.get("generated_video"):
        return ProjectStatus.FAILED
    if row.get("generated_video"):
        return ProjectStatus.VIDEO_READY
    if row.get("generated_image"):
        return ProjectStatus.IMAGE_READY
    return ProjectStatus.DRAFT


def _project_to_response(row: dict) -> ProjectResponse:
    """Convert a Supabase row dict to a ProjectResponse."""
    return ProjectResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row.get("name") or DEFAULT_PROJECT_NAME,
        product_name=row.get("product_name", ""),
        product_description=row.get("product_description"),
        aspect_ratio=row.get("aspect_ratio"),
        target_length=row.get("target_length") or DEFAULT_TARGET_LENGTH,
        user_prompt=row.get("user_prompt"),
        uploaded_images=row.get("uploaded_images") or [],
        generated_image=row.get("generated_image"),
        generated_video=row.get("generated_video"),
        is_generating=bool(row.get("is_generating")),
        is_published=bool(row.get("is_published")),
        error=row.get("error"),
        status=_derive_status(row),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


class ProjectStore:
    def __init__(self, client: Client):
        self._sb = client

    def _table(self):
        return self._sb.table(PROJECTS_TABLE)

    # ═════════════════════════════════════════════════════════════════════════
    # A. Create
    # ═════════════════════════════════════════════════════════════════════════

    async def create(
        self,
        user_id: str,
        product_name: str,
        uploaded_images: list[str],
        name: str = DEFAULT_PROJECT_NAME,
        product_description: Optional[str] = None,
        aspect_ratio: Optional[str] = None,
        target_length: int = DEFAULT_TARGET_LENGTH,
        user_prompt: Optional[str] = None,
        is_generating: bool = True,
    ) -> ProjectResponse:
        now = _now_iso()
        row = {
            "id": str(uuid4()),
            "user_id": user_id,
            "name": name or DEFAULT_PROJECT_NAME,
            "product_name": product_name,
            "product_description": product_description,
            "aspect_ratio": aspect_ratio,
            "target_length": target_length,
            "user_prompt": user_prompt,
            "uploaded_images": list(uploaded_images),
            "generated_image": None,
            "generated_video": None,
            "is_generating": is_generating,
            "is_published": False,
            "error": None,
            "created_at": now,
            "updated_at": now,
        }
        result = self._table().insert(row).execute()
        stored = result.data[0] if result.data else row
        logger.info(f"Project {stored['id']} created for user {user_id}")
        return _project_to_response(stored)

    # ═════════════════════════════════════════════════════════════════════════
    # B. Read
    # ═════════════════════════════════════════════════════════════════════════

    async def find_by_id(self, project_id: str, user_id: str) -> Optional[ProjectResponse]:
        """Load a project owned by `user_id`, or None."""
        result = (
            self._table()
            .select("*")
            .eq("id", project_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return _project_to_response(result.data[0])

    async def list_for_user(self, user_id: str) -> list[ProjectResponse]:
        """All projects for a user, newest first."""
        result = (
            self._table()
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .execute()
        )
        return [_project_to_response(row) for row in result.data]

    async def list_published(self) -> list[ProjectResponse]:
        result = (
            self._table()
            .select("*")
            .eq("is_published", True)
            .order("created_at", desc=True)
            .execute()
        )
        return [_project_to_response(row) for row in result.data]

    # ═════════════════════════════════════════════════════════════════════════
    # C. Update (internal, called by the jobs)
    # ═════════════════════════════════════════════════════════════════════════

    async def update(self, project_id: str, fields: dict[str, Any]) -> None:
        """Patch a project's output fields. `updated_at` is always refreshed."""
        update = {**fields, "updated_at": _now_iso()}
        self._table().update(update).eq("id", project_id).execute()
        logger.info(f"Project {project_id} updated: {sorted(fields)}")

    async def claim_for_generation(self, project_id: str, user_id: str) -> bool:
        """
        Flip is_generating False → True in one conditional update.

        Only a project that is idle and has no video yet matches, so two
        concurrent callers cannot both win. Returns True if this caller won.
        """
        result = (
            self._table()
            .update({"is_generating": True, "updated_at": _now_iso()})
            .eq("id", project_id)
            .eq("user_id", user_id)
            .eq("is_generating", False)
            .is_("generated_video", "null")
            .execute()
        )
        claimed = bool(result.data)
        if not claimed:
            logger.warning(f"Project {project_id} claim lost (already generating or done)")
        return claimed

    async def set_published(
        self,
        project_id: str,
        user_id: str,
        is_published: bool,
    ) -> Optional[ProjectResponse]:
        result = (
            self._table()
            .update({"is_published": is_published, "updated_at": _now_iso()})
            .eq("id", project_id)
            .eq("user_id", user_id)
            .execute()
        )
        if not result.data:
            return None
        return _project_to_response(result.data[0])

    # ═════════════════════════════════════════════════════════════════════════
    # D. Delete
    # ═════════════════════════════════════════════════════════════════════════

    async def delete(self, project_id: str, user_id: str) -> bool:
        """Owner-scoped delete. Returns False if nothing matched."""
        result = (
            self._table()
            .delete()
            .eq("id", project_id)
            .eq("user_id", user_id)
            .execute()
        )
        deleted = bool(result.data)
        if deleted:
            logger.info(f"Project {project_id} deleted by user {user_id}")
        return deleted
