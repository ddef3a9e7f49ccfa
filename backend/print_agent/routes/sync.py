"""Sync API - printed files the upstream authority has not acknowledged."""
from fastapi import APIRouter, Depends

from print_agent.dependencies import get_file_repository, unwrap
from print_agent.schemas.common import ItemError
from print_agent.schemas.file import FileResponse, SyncAckRequest, SyncAckResponse
from print_agent.services.file_store import FileRepository, parse_file_id

router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.get("", response_model=list[FileResponse])
async def list_unsynced(files: FileRepository = Depends(get_file_repository)):
    return unwrap(await files.list_for_sync())


@router.post("", response_model=SyncAckResponse)
async def acknowledge(body: SyncAckRequest, files: FileRepository = Depends(get_file_repository)):
    """Mark the given files as synced. Unknown ids are reported, not fatal."""
    response = SyncAckResponse()
    for file_id in body.files:
        uid = parse_file_id(file_id)
        if uid is None:
            response.errors.append(ItemError(id=file_id, error="Invalid file id"))
            continue
        result = await files.mark_synced(uid)
        if result.ok:
            response.synced.append(file_id)
        else:
            response.errors.append(ItemError(id=file_id, error=result.detail))
    return response
