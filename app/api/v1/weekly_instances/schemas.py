from datetime import date, datetime, time
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_serializer, field_validator, model_validator

from app.api.v1.timetables.schemas import parse_day, parse_time_24


class OccurrenceCreate(BaseModel):
    """Manual lesson added directly to a weekly instance."""

    student_name: str = Field(..., min_length=1, max_length=100)
    subject: Optional[str] = Field(None, max_length=100)
    day_of_week: str = Field(..., description="1-7, MONDAY..SUNDAY, 周一..周日 or 星期一..星期日")
    start_time: time = Field(..., description="24-hour format, e.g. 09:00")
    end_time: time = Field(..., description="24-hour format, e.g. 10:00")
    schedule_date: Optional[date] = Field(None, description="Computed from day_of_week when omitted")
    note: Optional[str] = None

    @field_validator("day_of_week", mode="before")
    @classmethod
    def validate_day(cls, v: Union[int, str]) -> str:
        return parse_day(v)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_time(cls, v: Union[str, time]) -> time:
        return parse_time_24(v)

    @model_validator(mode="after")
    def validate_time_range(self) -> "OccurrenceCreate":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class OccurrenceUpdate(BaseModel):
    """Partial update: only fields present in the request are applied."""

    student_name: Optional[str] = Field(None, min_length=1, max_length=100)
    subject: Optional[str] = Field(None, max_length=100)
    day_of_week: Optional[str] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    schedule_date: Optional[date] = None
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


class LeaveApply(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class SwapRequest(BaseModel):
    occurrence_id_a: int
    occurrence_id_b: int

    @model_validator(mode="after")
    def validate_distinct(self) -> "SwapRequest":
        if self.occurrence_id_a == self.occurrence_id_b:
            raise ValueError("Cannot swap an occurrence with itself")
        return self


class OccurrenceIds(BaseModel):
    ids: List[int] = Field(..., min_length=1)


class OccurrenceResponse(BaseModel):
    id: int
    weekly_instance_id: int
    template_slot_id: Optional[int]
    student_name: str
    subject: Optional[str]
    day_of_week: str
    start_time: time
    end_time: time
    schedule_date: date
    note: Optional[str]
    is_manual_added: bool
    is_modified: bool
    is_on_leave: bool
    leave_reason: Optional[str]
    leave_requested_at: Optional[datetime]
    is_cancelled: bool
    cancelled_at: Optional[datetime]

    class Config:
        from_attributes = True

    @field_serializer("start_time", "end_time")
    def serialize_time_24(self, t: time) -> str:
        """Output as 24-hour string HH:MM (e.g. 09:00, 09:45)."""
        return t.strftime("%H:%M")


class WeeklyInstanceResponse(BaseModel):
    id: int
    template_id: int
    week_start_date: date
    week_end_date: date
    year_week: str
    is_current: bool
    generated_at: datetime
    last_synced_at: Optional[datetime]

    class Config:
        from_attributes = True


class WeeklyInstanceSummary(WeeklyInstanceResponse):
    occurrence_count: int


class CurrentInstanceResponse(BaseModel):
    has_instance: bool
    instance: Optional[WeeklyInstanceResponse] = None
    occurrences: List[OccurrenceResponse] = []


class SwapResponse(BaseModel):
    first: OccurrenceResponse
    second: OccurrenceResponse


class SyncResultResponse(BaseModel):
    created: int
    updated: int
    deleted: int
    skipped: int


class CountResponse(BaseModel):
    count: int


class DedupeSummaryResponse(BaseModel):
    instances_processed: int
    occurrences_removed: int


class BatchGenerateResponse(BaseModel):
    processed: List[int]
    failed: Dict[int, str]
