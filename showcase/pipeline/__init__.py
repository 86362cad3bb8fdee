"""
Product Showcase Generation Pipeline

Two-stage, credit-gated generation for:
  Stage 1: Image Composite:  product photo + person photo → Gemini image → e-commerce shot
  Stage 2: Video Extension:  composite image → Veo long-running operation → showcase video
  Projects: Durable lifecycle records, publish toggle, owner-scoped access
"""

from .orchestrator import GenerationService
from .routes import project_router, user_router
from .models import ProjectStatus

__all__ = [
    "GenerationService",
    "project_router",
    "user_router",
    "ProjectStatus",
]
