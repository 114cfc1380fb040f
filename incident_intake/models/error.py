"""Error tracking data models."""

from typing import Optional

from pydantic import BaseModel


class ItemFailure(BaseModel):
    """Failure of a single report inside a batch."""

    index: int
    phase: str  # 'validation' or 'persistence'
    error_type: str
    message: str
    organization_id: Optional[str] = None
