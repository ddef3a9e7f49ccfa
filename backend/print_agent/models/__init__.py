"""Import all models so SQLAlchemy metadata knows about them."""
from print_agent.models.base import Base, Active, Deleted
from print_agent.models.file_record import FileRecord
from print_agent.models.printer import Printer
from print_agent.models.log_entry import LogEntry

__all__ = [
    "Base", "Active", "Deleted",
    "FileRecord", "Printer", "LogEntry",
]
