"""
MODULE: api/routes/__init__.py
PURPOSE: FastAPI route handlers.

CONTAINS:
    - messages.py    Chat turn, thread memory and document download (/api/chat, /api/threads/*, /api/documents/*)
"""

from .messages import router as messages_router

__all__ = ["messages_router"]
