from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from contentflow.db.base_class import Base


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # source
    source_url: Mapped[str] = mapped_column(Text, nullable=False)

    # status (JobStatus value); the only field dispatch looks at
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="created", index=True)
    status_changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # human approval (set outside the pipeline)
    approval_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # errorInfo: populated iff status == "failed"
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_stage: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_kind: Mapped[str | None] = mapped_column(String(32), nullable=True)
    error_occurred_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # multi-part stage progress
    total_units: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_units: Mapped[int | None] = mapped_column(Integer, nullable=True)

    asset_refs_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")  # JSON: folder|thumbnail|images|final_output
    payload_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")  # JSON: metadata|enhanced

    # timeout monitor marker
    last_warned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), onupdate=func.now(), server_default=func.now())
