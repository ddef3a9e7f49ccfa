"""File request/response schemas."""
import uuid
from datetime import datetime
from typing import Optional

from print_agent.schemas.base import CamelModel, CamelORMModel
from print_agent.schemas.common import ItemError


class FileResponse(CamelORMModel):
    id: uuid.UUID
    file_name: str
    pages: int
    path: str
    asset_id: Optional[str] = None
    printed: bool = False
    synced: bool = False
    created_at: Optional[datetime] = None


class BulkDeleteResponse(CamelModel):
    deleted: int = 0
    errors: list[ItemError] = []


class SyncAckRequest(CamelModel):
    files: list[str]


class SyncAckResponse(CamelModel):
    synced: list[str] = []
    errors: list[ItemError] = []
