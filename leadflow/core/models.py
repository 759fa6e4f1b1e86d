from enum import Enum


class TaskType(str, Enum):
    WORKFLOW = "workflow"
    SCRAPER = "scraper"
    EMAIL = "email"
    SOCIAL = "social"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 1, "medium": 2, "high": 3}[self.value]


TERMINAL_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class RunState(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SUSPENDED = "suspended"


class NodeType(str, Enum):
    TRIGGER = "trigger"
    AI_AGENT = "ai_agent"
    API_REQUEST = "api_request"
    EMAIL = "email"
    CONDITION = "condition"
    DELAY = "delay"
    WEBHOOK = "webhook"
    DATABASE = "database"
    NOTIFICATION = "notification"
    SOCIAL_POST = "social_post"
    SOCIAL_REPLY = "social_reply"
    SOCIAL_MONITOR = "social_monitor"


class TriggerType(str, Enum):
    SCHEDULE = "schedule"
    NEW_BUSINESS = "new_business"
    WEBHOOK = "webhook"
    MANUAL = "manual"
