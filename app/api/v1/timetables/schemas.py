from datetime import datetime, time
from typing import Optional, Union

from pydantic import BaseModel, Field, field_serializer, field_validator

from app.core.week_calendar import normalize_day


def parse_time_24(v: Union[str, time]) -> time:
    """Parse 24-hour time string (HH:MM or HH:MM:SS) to time."""
    if isinstance(v, time):
        return v
    if isinstance(v, str):
        v = v.strip()
        if len(v) <= 5:  # H:MM / HH:MM
            return datetime.strptime(v, "%H:%M").time()
        return datetime.strptime(v, "%H:%M:%S").time()
    raise ValueError("start_time/end_time must be 24-hour string (e.g. 09:00, 09:45) or time")


def parse_day(v: Union[int, str]) -> str:
    """Accept 1-7, English or Chinese day names; store as MONDAY..SUNDAY."""
    return normalize_day(v)


class TimetableCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    is_weekly: bool = True
    organization_id: Optional[int] = None


class TimetableResponse(BaseModel):
    id: int
    name: str
    is_weekly: bool
    is_active: bool
    is_archived: bool
    organization_id: Optional[int]
    owner_id: int
    created_at: datetime

    class Config:
        from_attributes = True


class TemplateSlotCreate(BaseModel):
    day_of_week: str = Field(..., description="1-7, MONDAY..SUNDAY, 周一..周日 or 星期一..星期日")
    start_time: time = Field(..., description="24-hour format, e.g. 09:00")
    end_time: time = Field(..., description="24-hour format, e.g. 10:00")
    student_name: str = Field(..., min_length=1, max_length=100)
    subject: Optional[str] = Field(None, max_length=100)
    note: Optional[str] = None

    @field_validator("day_of_week", mode="before")
    @classmethod
    def validate_day(cls, v: Union[int, str]) -> str:
        return parse_day(v)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_time(cls, v: Union[str, time]) -> time:
        return parse_time_24(v)


class TemplateSlotUpdate(BaseModel):
    day_of_week: Optional[str] = None
    start_time: Optional[time] = Field(None, description="24-hour format, e.g. 09:00")
    end_time: Optional[time] = Field(None, description="24-hour format, e.g. 10:00")
    student_name: Optional[str] = Field(None, min_length=1, max_length=100)
    subject: Optional[str] = Field(None, max_length=100)
    note: Optional[str] = None

    @field_validator("day_of_week", mode="before")
    @classmethod
    def validate_day(cls, v: Optional[Union[int, str]]) -> Optional[str]:
        if v is None:
            return None
        return parse_day(v)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_time(cls, v: Optional[Union[str, time]]) -> Optional[time]:
        if v is None:
            return None
        return parse_time_24(v)


class TemplateSlotResponse(BaseModel):
    id: int
    timetable_id: int
    day_of_week: str
    start_time: time
    end_time: time
    student_name: str
    subject: Optional[str]
    note: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True

    @field_serializer("start_time", "end_time")
    def serialize_time_24(self, t: time) -> str:
        """Output as 24-hour string HH:MM (e.g. 09:00, 09:45)."""
        return t.strftime("%H:%M")
