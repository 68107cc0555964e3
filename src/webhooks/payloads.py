"""Webhook payload models, keyed by the sender's event type.

Bodies are validated into one of these models at the boundary, before any
field is read. Unknown event types fall back to ``GenericPayload``. Every
model keeps unrecognized fields so the original body survives round-trips.
"""

from datetime import datetime
from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict, PrivateAttr, ValidationError

from src.errors import InvalidPayloadError


class _Loose(BaseModel):
    model_config = ConfigDict(extra="allow")


class User(_Loose):
    login: Optional[str] = None
    name: Optional[str] = None


class Repository(_Loose):
    full_name: Optional[str] = None
    html_url: Optional[str] = None


class Commit(_Loose):
    id: Optional[str] = None
    message: Optional[str] = None
    timestamp: Optional[datetime] = None
    url: Optional[str] = None


class PullRequest(_Loose):
    number: Optional[int] = None
    title: str = ""
    body: Optional[str] = None
    html_url: Optional[str] = None
    updated_at: Optional[datetime] = None


class Issue(_Loose):
    number: Optional[int] = None
    title: str = ""
    body: Optional[str] = None
    html_url: Optional[str] = None
    updated_at: Optional[datetime] = None


class Release(_Loose):
    tag_name: Optional[str] = None
    name: Optional[str] = None
    body: Optional[str] = None
    html_url: Optional[str] = None
    published_at: Optional[datetime] = None


class WebhookPayload(_Loose):
    """Fields shared by every event type, plus the derived display metadata."""

    event_type: ClassVar[str] = "generic"
    _received_type: Optional[str] = PrivateAttr(default=None)

    action: Optional[str] = None
    sender: Optional[User] = None
    repository: Optional[Repository] = None

    @property
    def title(self) -> str:
        extra_title = (self.model_extra or {}).get("title")
        if isinstance(extra_title, str) and extra_title:
            return extra_title
        return f"{self._received_type or self.event_type} event"

    @property
    def description(self) -> Optional[str]:
        return None

    @property
    def url(self) -> Optional[str]:
        return self.repository.html_url if self.repository else None

    @property
    def actor(self) -> Optional[str]:
        if self.sender:
            return self.sender.login or self.sender.name
        return None

    @property
    def occurred_at(self) -> Optional[datetime]:
        return None

    def _in_repo(self) -> str:
        if self.repository and self.repository.full_name:
            return f" in {self.repository.full_name}"
        return ""


class GenericPayload(WebhookPayload):
    pass


class PushPayload(WebhookPayload):
    event_type: ClassVar[str] = "push"

    ref: Optional[str] = None
    compare: Optional[str] = None
    commits: list[Commit] = []
    head_commit: Optional[Commit] = None
    pusher: Optional[User] = None

    @property
    def branch(self) -> Optional[str]:
        if self.ref and self.ref.startswith("refs/heads/"):
            return self.ref[len("refs/heads/"):]
        return self.ref

    @property
    def title(self) -> str:
        count = len(self.commits)
        noun = "commit" if count == 1 else "commits"
        target = f" to {self.branch}" if self.branch else ""
        return f"Pushed {count} {noun}{target}{self._in_repo()}"

    @property
    def description(self) -> Optional[str]:
        if self.head_commit and self.head_commit.message:
            return self.head_commit.message.splitlines()[0]
        return None

    @property
    def url(self) -> Optional[str]:
        return self.compare or super().url

    @property
    def actor(self) -> Optional[str]:
        if self.pusher and (self.pusher.name or self.pusher.login):
            return self.pusher.name or self.pusher.login
        return super().actor

    @property
    def occurred_at(self) -> Optional[datetime]:
        return self.head_commit.timestamp if self.head_commit else None


class PullRequestPayload(WebhookPayload):
    event_type: ClassVar[str] = "pull_request"

    number: Optional[int] = None
    pull_request: PullRequest

    @property
    def title(self) -> str:
        number = self.number or self.pull_request.number
        verb = self.action or "updated"
        return f"Pull request #{number} {verb}: {self.pull_request.title}"

    @property
    def description(self) -> Optional[str]:
        return self.pull_request.body

    @property
    def url(self) -> Optional[str]:
        return self.pull_request.html_url

    @property
    def occurred_at(self) -> Optional[datetime]:
        return self.pull_request.updated_at


class IssuesPayload(WebhookPayload):
    event_type: ClassVar[str] = "issues"

    issue: Issue

    @property
    def title(self) -> str:
        verb = self.action or "updated"
        return f"Issue #{self.issue.number} {verb}: {self.issue.title}"

    @property
    def description(self) -> Optional[str]:
        return self.issue.body

    @property
    def url(self) -> Optional[str]:
        return self.issue.html_url

    @property
    def occurred_at(self) -> Optional[datetime]:
        return self.issue.updated_at


class ReleasePayload(WebhookPayload):
    event_type: ClassVar[str] = "release"

    release: Release

    @property
    def title(self) -> str:
        name = self.release.name or self.release.tag_name or "release"
        verb = self.action or "updated"
        return f"Release {name} {verb}{self._in_repo()}"

    @property
    def description(self) -> Optional[str]:
        return self.release.body

    @property
    def url(self) -> Optional[str]:
        return self.release.html_url

    @property
    def occurred_at(self) -> Optional[datetime]:
        return self.release.published_at


PAYLOAD_TYPES: dict[str, type[WebhookPayload]] = {
    cls.event_type: cls for cls in (PushPayload, PullRequestPayload, IssuesPayload, ReleasePayload)
}


def parse_payload(event_type: Optional[str], data: object) -> WebhookPayload:
    """Validate a decoded JSON body into the model for ``event_type``."""
    if not isinstance(data, dict):
        raise InvalidPayloadError("Webhook body must be a JSON object")

    model = PAYLOAD_TYPES.get(event_type or "", GenericPayload)
    try:
        payload = model.model_validate(data)
    except ValidationError as e:
        raise InvalidPayloadError(
            f"Invalid {event_type} payload",
            {"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        ) from e

    payload._received_type = event_type
    return payload
