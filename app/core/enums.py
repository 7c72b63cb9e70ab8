from enum import Enum


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


class SyncStrategy(str, Enum):
    FULL_OVERRIDE = "FULL_OVERRIDE"
    SELECTIVE_FUTURE = "SELECTIVE_FUTURE"
