"""Timetable metadata. A weekly timetable is the recurring template its slots belong to."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from app.core.week_calendar import utc_now
from app.db.session import Base


class Timetable(Base):
    __tablename__ = "timetables"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    is_weekly = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_archived = Column(Boolean, nullable=False, default=False)
    organization_id = Column(Integer, nullable=True, index=True)
    owner_id = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    slots = relationship(
        "TemplateSlot",
        back_populates="timetable",
        cascade="all, delete-orphan",
        order_by="TemplateSlot.id",
    )
