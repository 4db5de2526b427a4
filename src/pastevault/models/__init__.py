"""
Pydantic data models package.

Contains the caller-facing request and result models for paste operations.
"""

from .paste import (
    CreatePasteRequest,
    CreatedPaste,
    PasteContent,
    PasteMetadata,
)

__all__ = [
    "CreatePasteRequest",
    "CreatedPaste",
    "PasteContent",
    "PasteMetadata",
]
