"""Weekly instance: one template materialized for one concrete Monday..Sunday week."""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from app.core.week_calendar import utc_now
from app.db.session import Base


class WeeklyInstance(Base):
    __tablename__ = "weekly_instances"
    # Lookup index only; at most one row per (template_id, year_week) is enforced by the service.
    __table_args__ = (Index("ix_weekly_instances_template_week", "template_id", "year_week"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    template_id = Column(Integer, ForeignKey("timetables.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(Integer, nullable=True)
    owner_id = Column(Integer, nullable=True)
    week_start_date = Column(Date, nullable=False)
    week_end_date = Column(Date, nullable=False)
    year_week = Column(String(10), nullable=False)
    is_current = Column(Boolean, nullable=False, default=False)
    generated_at = Column(DateTime, default=utc_now, nullable=False)
    last_synced_at = Column(DateTime, nullable=True)

    occurrences = relationship(
        "InstanceOccurrence",
        back_populates="weekly_instance",
        cascade="all, delete-orphan",
        order_by="InstanceOccurrence.id",
    )
