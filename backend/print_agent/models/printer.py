"""Printer model - one CUPS queue per row, keyed by the upstream id."""
from sqlalchemy import String, Text, Integer
from sqlalchemy.orm import Mapped, mapped_column
from print_agent.models.base import Base, TimestampMixin, SoftDeleteMixin

PROTOCOLS = ("socket", "ipp", "ipps", "lpd", "http", "https", "smb", "dnssd")


class Printer(Base, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "printers"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(30), default="functional")
    protocol: Mapped[str] = mapped_column(String(20), default="socket")
    driver: Mapped[str | None] = mapped_column(String(100), default="generic", nullable=True)
    uri: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(15), nullable=True)
    mac_address: Mapped[str | None] = mapped_column(String(17), nullable=True)
    port: Mapped[int | None] = mapped_column(Integer, nullable=True)
