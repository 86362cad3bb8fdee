"""
Request dependencies.

Collaborators live on app.state (built in the lifespan); routes pull them in
with Depends so tests can swap them through app.dependency_overrides.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from supabase import Client

from .credits import CreditLedger
from .orchestrator import GenerationService

logger = logging.getLogger(__name__)


def get_supabase(request: Request) -> Client:
    return request.app.state.supabase


def get_service(request: Request) -> GenerationService:
    return request.app.state.service


def get_ledger(request: Request) -> CreditLedger:
    return request.app.state.ledger


async def get_current_user_id(
    authorization: Optional[str] = Header(None),
    supabase: Client = Depends(get_supabase),
) -> str:
    """Validate the Supabase session token and return the caller's user id."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")

    token = authorization[len("Bearer "):].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        response = supabase.auth.get_user(token)
    except Exception as e:
        logger.warning(f"Auth error: {e}")
        raise HTTPException(status_code=401, detail="Authentication failed")

    if not response or not response.user:
        raise HTTPException(status_code=401, detail="Invalid token")

    return response.user.id
