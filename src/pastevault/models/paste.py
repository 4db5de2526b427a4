"""
Paste request and result models.

- Content is text or raw bytes, measured after UTF-8 encoding
- Title and extension are stored verbatim, never interpreted
- Expiration is a positive number of seconds, absent means never
"""

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CreatePasteRequest(BaseModel):
    """
    Input to Create.

    Size limits that depend on configuration are checked by the service;
    this model only enforces shape.
    """

    model_config = ConfigDict(frozen=True)

    text: Union[str, bytes] = Field(description="Paste content")
    extension: Optional[str] = Field(
        default=None,
        pattern=r"^[A-Za-z0-9_+\-.]*$",
        description="File extension used to pick a highlighter",
    )
    title: Optional[str] = Field(default=None, description="Free-form title")
    expires_in_seconds: Optional[int] = Field(
        default=None,
        ge=1,
        description="Lifetime in seconds, unlimited when absent",
    )
    burn_after_reading: bool = Field(default=False, description="Destroy after the first read")
    password: Optional[str] = Field(default=None, description="Encrypt with this password")

    @field_validator("extension", "title", "password")
    def empty_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Empty strings mean the field was not given."""
        return v or None

    @property
    def content(self) -> bytes:
        if isinstance(self.text, bytes):
            return self.text
        return self.text.encode("utf-8")


class CreatedPaste(BaseModel):
    """Result of Create. `owner_token` is shown exactly once."""

    id: str
    display_path: str
    owner_token: str
    expires_at: Optional[datetime] = None


class PasteContent(BaseModel):
    """Result of FetchRaw."""

    content: bytes
    extension: Optional[str] = None
    title: Optional[str] = None
    burned: bool = False

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


class PasteMetadata(BaseModel):
    """Descriptive data about a paste, readable without its password."""

    id: str
    display_path: str
    title: Optional[str] = None
    extension: Optional[str] = None
    encrypted: bool
    burn_after_reading: bool
    created_at: datetime
    expires_at: Optional[datetime] = None


def to_datetime(timestamp: Optional[float]) -> Optional[datetime]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)
