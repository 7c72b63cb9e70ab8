from app.core.models.timetable import Timetable
from app.core.models.template_slot import TemplateSlot
from app.core.models.weekly_instance import WeeklyInstance
from app.core.models.instance_occurrence import InstanceOccurrence

__all__ = [
    "Timetable",
    "TemplateSlot",
    "WeeklyInstance",
    "InstanceOccurrence",
]
