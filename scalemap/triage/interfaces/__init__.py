"""
Triage Interfaces Layer
========================

Interface adapters (controllers) for the assessment triage module.

Contains:
- Controllers: FastAPI route handlers
"""

from scalemap.triage.interfaces.controllers import router as triage_router

__all__ = ["triage_router"]
