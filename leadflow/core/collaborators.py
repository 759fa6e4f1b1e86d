"""External collaborators consumed by node handlers and task executors.

Everything that talks to a mail provider, a social network, an AI model or
the application database lives behind one of these async callables. The
engine only needs their results; wiring real integrations is done by
whoever builds the `Collaborators` instance.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable


class CollaboratorNotConfigured(RuntimeError):
    """Raised when a node or task needs an integration that was never wired."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} is not configured")


@dataclass
class SendResult:
    success: bool
    error: str | None = None
    message_id: str | None = None


# (to, subject, body) -> SendResult
EmailSender = Callable[[str, str, str], Awaitable[SendResult]]
# account id -> account record or None
AccountLookup = Callable[[str], Awaitable[dict[str, Any] | None]]
# (account, content, media_url) -> published?
SocialPublisher = Callable[[dict[str, Any], str, str | None], Awaitable[bool]]
# (account, rule) -> automation id
AutomationCreator = Callable[[dict[str, Any], dict[str, Any]], Awaitable[str]]
# (account, platform, monitor_type, keywords) -> results
SocialMonitor = Callable[[dict[str, Any], str, str, list[str]], Awaitable[list[Any]]]
# (prompt, options) -> generated text
AIClient = Callable[[str, dict[str, Any]], Awaitable[str]]
# (operation, table, data) -> result rows / affected row info
DatabaseAction = Callable[[str, str, dict[str, Any]], Awaitable[Any]]
# (user id, title, message) -> None
Notifier = Callable[[str | None, str, str], Awaitable[None]]
# business id -> business fields or None
BusinessLookup = Callable[[str], Awaitable[dict[str, Any] | None]]
# (user id, business types) -> business records
BusinessFinder = Callable[[str, list[str]], Awaitable[list[dict[str, Any]]]]
# task data -> result mapping (raises on failure)
TaskAction = Callable[[dict[str, Any]], Awaitable[Any]]


def _missing(name: str):
    async def not_configured(*args, **kwargs):
        raise CollaboratorNotConfigured(name)

    return not_configured


@dataclass
class Collaborators:
    email_sender: EmailSender = field(default_factory=lambda: _missing("Email sender"))
    account_lookup: AccountLookup = field(
        default_factory=lambda: _missing("Connected account lookup")
    )
    social_publishers: dict[str, SocialPublisher] = field(default_factory=dict)
    automation_creator: AutomationCreator = field(
        default_factory=lambda: _missing("Social automation store")
    )
    social_monitor: SocialMonitor = field(
        default_factory=lambda: _missing("Social monitor")
    )
    ai_client: AIClient = field(default_factory=lambda: _missing("AI client"))
    database: DatabaseAction = field(default_factory=lambda: _missing("Database action"))
    notifier: Notifier = field(default_factory=lambda: _missing("Notifier"))
    business_lookup: BusinessLookup | None = None
    business_finder: BusinessFinder | None = None
    scraper: TaskAction = field(default_factory=lambda: _missing("Scraper"))
    social_automation: TaskAction = field(
        default_factory=lambda: _missing("Social automation worker")
    )
