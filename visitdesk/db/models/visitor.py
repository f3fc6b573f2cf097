from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from visitdesk.core.timeutil import utcnow
from visitdesk.db.base import Base


class VisitorStatus(str, Enum):
    checked_in = "checked_in"
    checked_out = "checked_out"


class VisitorRecord(Base):
    __tablename__ = "visitor_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pass_id: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    visitor_name: Mapped[str] = mapped_column(String(100), nullable=False)
    mobile: Mapped[str | None] = mapped_column(String(15), nullable=True)
    host_employee: Mapped[str | None] = mapped_column(String(100), nullable=True)
    host_email: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    photo_base64: Mapped[str | None] = mapped_column(Text, nullable=True)
    qr_code_data: Mapped[str] = mapped_column(Text, nullable=False)
    checkin_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    checkout_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=VisitorStatus.checked_in.value, index=True)
    created_by: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
