"""Template slot (source of truth). One recurring weekly lesson: day + time range + student."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, Time
from sqlalchemy.orm import relationship

from app.core.week_calendar import utc_now
from app.db.session import Base


class TemplateSlot(Base):
    __tablename__ = "template_slots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timetable_id = Column(Integer, ForeignKey("timetables.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = Column(String(10), nullable=False)  # MONDAY .. SUNDAY
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    student_name = Column(String(100), nullable=False)
    subject = Column(String(100), nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    timetable = relationship("Timetable", back_populates="slots")

    @property
    def slot_key(self):
        return (self.day_of_week, self.start_time, self.end_time)
