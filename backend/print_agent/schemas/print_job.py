"""Print request schema."""
from print_agent.schemas.base import CamelModel


class PrintRequest(CamelModel):
    file_id: str
    asset_id: str


class PrintResponse(CamelModel):
    success: bool = True
    message: str = ""
    file_id: str = ""
    asset_id: str = ""
