"""One concrete lesson inside a weekly instance, optionally linked to its template slot."""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text, Time
from sqlalchemy.orm import relationship

from app.core.week_calendar import utc_now
from app.db.session import Base


class InstanceOccurrence(Base):
    __tablename__ = "instance_occurrences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    weekly_instance_id = Column(
        Integer,
        ForeignKey("weekly_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Weak reference to template_slots.id (no FK): deleting a slot must not touch occurrences.
    template_slot_id = Column(Integer, nullable=True, index=True)
    student_name = Column(String(100), nullable=False)
    subject = Column(String(100), nullable=True)
    day_of_week = Column(String(10), nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    schedule_date = Column(Date, nullable=False)
    note = Column(Text, nullable=True)
    is_manual_added = Column(Boolean, nullable=False, default=False)
    is_modified = Column(Boolean, nullable=False, default=False)
    is_on_leave = Column(Boolean, nullable=False, default=False)
    leave_reason = Column(Text, nullable=True)
    leave_requested_at = Column(DateTime, nullable=True)
    is_cancelled = Column(Boolean, nullable=False, default=False)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    weekly_instance = relationship("WeeklyInstance", back_populates="occurrences")

    @property
    def slot_key(self):
        return (self.day_of_week, self.start_time, self.end_time)

    @property
    def is_active(self) -> bool:
        """Occupies its time slot (not on leave, not cancelled)."""
        return not self.is_on_leave and not self.is_cancelled
