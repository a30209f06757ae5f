"""Domain entities for tracked repositories and their releases."""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

RepoKey = Tuple[str, str]

GITHUB_URL_PATTERN = re.compile(r"https?://github\.com/(.*?)/(.*?)/?$", re.IGNORECASE)


@dataclass(frozen=True)
class Release:
    """A published release, or a tag presented as one."""

    name: str
    url: str = ""
    description: str = ""
    is_prerelease: bool = False

    @classmethod
    def from_tag(cls, tag_name: str) -> "Release":
        return cls(name=tag_name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Release":
        return cls(
            name=data.get("name") or "",
            url=data.get("url") or "",
            description=data.get("description") or "",
            is_prerelease=bool(data.get("isPrerelease", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "description": self.description,
            "isPrerelease": self.is_prerelease,
        }


@dataclass(frozen=True)
class Repository:
    """Stored state of a tracked repository."""

    owner: str
    name: str
    releases: Tuple[Release, ...] = ()
    tags: Tuple[Release, ...] = ()
    watched_users: Tuple[int, ...] = ()

    @property
    def key(self) -> RepoKey:
        return (self.owner, self.name)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class RepoSnapshot:
    """Releases and tags fetched for one repository in one cycle."""

    owner: str
    name: str
    releases: Tuple[Release, ...] = ()
    tags: Tuple[Release, ...] = ()

    @property
    def key(self) -> RepoKey:
        return (self.owner, self.name)


@dataclass(frozen=True)
class UpdateRecord:
    """
    New or changed items found for one repository in one cycle.

    ``releases`` is what recipients get notified about. The ``new_releases``,
    ``new_tags`` and ``changed_releases`` lists say how to persist it.
    """

    owner: str
    name: str
    releases: Tuple[Release, ...]
    watched_users: Tuple[int, ...]
    new_releases: Tuple[Release, ...] = ()
    new_tags: Tuple[Release, ...] = ()
    changed_releases: Tuple[Release, ...] = ()

    @property
    def key(self) -> RepoKey:
        return (self.owner, self.name)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class Recipient:
    """A user or group chat that receives notifications."""

    user_id: int
    kind: str = "private"
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    title: Optional[str] = None
    token: Optional[str] = None
    subscriptions: Tuple[RepoKey, ...] = field(default_factory=tuple)

    @property
    def is_group(self) -> bool:
        return self.kind != "private"

    @property
    def display_name(self) -> str:
        if self.is_group:
            return self.title or str(self.user_id)
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or self.username or str(self.user_id)


def parse_repo(text: Optional[str]) -> Optional[RepoKey]:
    """
    Parse ``owner/name`` or a github.com URL into an ``(owner, name)`` pair.

    Returns None when the text does not name a repository.
    """
    if not text or not isinstance(text, str):
        return None

    match = GITHUB_URL_PATTERN.match(text.strip())
    if match:
        owner, name = match.group(1), match.group(2)
    else:
        parts = text.replace(" ", "").split("/")
        if len(parts) != 2:
            return None
        owner, name = parts

    if owner and name and "/" not in owner and "/" not in name:
        return owner, name
    return None
