from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TemplateNotFound(ServiceError):
    def __init__(self, template_id: int) -> None:
        super().__init__(f"Template timetable {template_id} not found", status.HTTP_404_NOT_FOUND)
        self.template_id = template_id


class NotWeeklyTemplate(ServiceError):
    def __init__(self, template_id: int) -> None:
        super().__init__(
            f"Timetable {template_id} is not a weekly template; instances can only be generated for weekly timetables",
            status.HTTP_400_BAD_REQUEST,
        )
        self.template_id = template_id


class SlotNotFound(ServiceError):
    def __init__(self, slot_id: int) -> None:
        super().__init__(f"Template slot {slot_id} not found", status.HTTP_404_NOT_FOUND)
        self.slot_id = slot_id


class InstanceNotFound(ServiceError):
    def __init__(self, instance_id: int) -> None:
        super().__init__(f"Weekly instance {instance_id} not found", status.HTTP_404_NOT_FOUND)
        self.instance_id = instance_id


class OccurrenceNotFound(ServiceError):
    def __init__(self, occurrence_id: int) -> None:
        super().__init__(f"Occurrence {occurrence_id} not found", status.HTTP_404_NOT_FOUND)
        self.occurrence_id = occurrence_id


class InvalidDayToken(ServiceError, ValueError):
    def __init__(self, token: object) -> None:
        super().__init__(f"Invalid day of week: {token!r}", status.HTTP_400_BAD_REQUEST)
        self.token = token


class InvalidTimeRange(ServiceError):
    def __init__(self) -> None:
        super().__init__("end_time must be after start_time", status.HTTP_400_BAD_REQUEST)


class ScheduleDateMismatch(ServiceError):
    """schedule_date must be the date of day_of_week inside the instance's week."""

    def __init__(self, schedule_date, day_of_week: str, expected) -> None:
        super().__init__(
            f"schedule_date {schedule_date} does not fall on {day_of_week} of this week (expected {expected})",
            status.HTTP_400_BAD_REQUEST,
        )
        self.schedule_date = schedule_date
        self.expected = expected


class AlreadyOnLeave(ServiceError):
    def __init__(self, occurrence_id: int) -> None:
        super().__init__(f"Occurrence {occurrence_id} is already on leave", status.HTTP_409_CONFLICT)
        self.occurrence_id = occurrence_id


class DuplicateInstance(ServiceError):
    """More than one weekly instance exists for the same template and week."""

    def __init__(self, template_id: int, year_week: str, instance_ids: list) -> None:
        super().__init__(
            f"Template {template_id} has {len(instance_ids)} instances for week {year_week}",
            status.HTTP_409_CONFLICT,
        )
        self.template_id = template_id
        self.year_week = year_week
        self.instance_ids = instance_ids


class DuplicateTemplateSlot(ServiceError):
    def __init__(self, day_of_week: str, start_time, end_time) -> None:
        super().__init__(
            f"A slot already exists on {day_of_week} {start_time:%H:%M}-{end_time:%H:%M}",
            status.HTTP_409_CONFLICT,
        )
