from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from contentflow.db.base_class import Base


class StageLease(Base):
    __tablename__ = "stage_leases"

    # stage key: a JobStatus value or "timeouts"
    stage: Mapped[str] = mapped_column(String(64), primary_key=True)

    # null holder = free
    holder: Mapped[str | None] = mapped_column(String(128), nullable=True)
    acquired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
