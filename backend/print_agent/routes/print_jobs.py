"""Print API."""
from fastapi import APIRouter, Depends

from print_agent.dependencies import get_dispatcher, unwrap
from print_agent.schemas.print_job import PrintRequest, PrintResponse
from print_agent.services.dispatcher import PrintDispatcher

router = APIRouter(prefix="/api/print", tags=["print"])


@router.post("", response_model=PrintResponse)
async def print_file(body: PrintRequest, dispatcher: PrintDispatcher = Depends(get_dispatcher)):
    """Send a registered file to the printer identified by ``assetId``."""
    message = unwrap(await dispatcher.print(body.file_id, body.asset_id))
    return PrintResponse(message=message, file_id=body.file_id, asset_id=body.asset_id)
