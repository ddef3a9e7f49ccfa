"""FileRecord model - a dropped document tracked from ingestion to print."""
import uuid
from datetime import datetime
from sqlalchemy import String, Integer, Boolean, DateTime, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column
from print_agent.models.base import Base, SoftDeleteMixin


class FileRecord(Base, SoftDeleteMixin):
    __tablename__ = "files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    asset_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    pages: Mapped[int] = mapped_column(Integer, nullable=False)
    path: Mapped[str] = mapped_column(String(1000), nullable=False, unique=True)
    printed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    synced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
