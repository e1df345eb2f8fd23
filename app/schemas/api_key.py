"""API key schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ApiKeyCreate(BaseModel):
    label: Optional[str] = Field(None, max_length=255)
    expires_at: Optional[datetime] = None


class ApiKeyResponse(BaseModel):
    """Listing view: never carries the key or its hash."""
    id: str
    label: str
    key_prefix: str
    is_active: bool
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    usage_count: int
    created_at: datetime

    class Config:
        from_attributes = True


class ApiKeyCreatedResponse(ApiKeyResponse):
    """Returned once at creation; ``api_key`` cannot be recovered later."""
    api_key: str
    warning: str = "Store this key now. It will not be shown again."
