"""Files API - pending documents and manual removal."""
from pathlib import Path

import aiofiles.os
from fastapi import APIRouter, Depends, HTTPException

from print_agent.dependencies import get_file_repository, unwrap
from print_agent.models.file_record import FileRecord
from print_agent.schemas.common import DeleteResponse, ItemError
from print_agent.schemas.file import BulkDeleteResponse, FileResponse
from print_agent.services.file_store import FileRepository, parse_file_id

router = APIRouter(prefix="/api/files", tags=["files"])


async def _discard(files: FileRepository, record: FileRecord) -> None:
    try:
        await aiofiles.os.remove(Path(record.path))
    except FileNotFoundError:
        pass
    except OSError as e:
        raise HTTPException(500, f"Could not delete {record.path}: {e}")
    unwrap(await files.soft_delete(record.id))


@router.get("", response_model=list[FileResponse])
async def list_files(files: FileRepository = Depends(get_file_repository)):
    """Files waiting to be printed."""
    return unwrap(await files.list_for_print())


@router.delete("/{file_id}", response_model=DeleteResponse)
async def delete_file(file_id: str, files: FileRepository = Depends(get_file_repository)):
    """Delete a pending file from disk and soft-delete its record."""
    uid = parse_file_id(file_id)
    if uid is None:
        raise HTTPException(400, "Invalid file id")
    record = unwrap(await files.get(uid))
    if not record:
        raise HTTPException(404, "File not found")
    await _discard(files, record)
    return DeleteResponse(id=file_id)


@router.delete("", response_model=BulkDeleteResponse)
async def delete_all_files(files: FileRepository = Depends(get_file_repository)):
    """Delete every file still waiting to be printed."""
    pending = unwrap(await files.list_for_print())
    response = BulkDeleteResponse()
    for record in pending:
        try:
            await _discard(files, record)
            response.deleted += 1
        except HTTPException as e:
            response.errors.append(ItemError(id=str(record.id), error=str(e.detail)))
    return response
