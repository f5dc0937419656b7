import enum


class RestockingStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    cancelled = "cancelled"


class ActionType(str, enum.Enum):
    create = "create"
    update = "update"
    delete = "delete"
