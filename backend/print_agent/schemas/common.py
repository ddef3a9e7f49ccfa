"""Shared response envelopes."""
from typing import Optional

from print_agent.schemas.base import CamelModel


class DeleteResponse(CamelModel):
    deleted: bool = True
    id: str = ""


class ItemError(CamelModel):
    id: Optional[str] = None
    error: str
