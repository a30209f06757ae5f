"""Rendering of release notifications and delivery to recipients."""

import logging
import re
from typing import Callable, Iterable, List, Tuple

from releasebot.domain.release import Release, Repository, UpdateRecord

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096

SendMessage = Callable[[int, str], None]


def sanitize_description(description: str) -> str:
    """Drop emphasis markers and escape underscores for Markdown output."""
    return description.replace("*", "").replace("_", "\\_").strip()


def short_release_message(owner: str, name: str, release: Release) -> str:
    prerelease = "<b>Pre-release</b> " if release.is_prerelease else ""
    return f"<b>{owner}/{name}</b>\n{prerelease}{release.name}"


def full_release_message(owner: str, name: str, release: Release) -> str:
    prerelease = "*Pre-release* " if release.is_prerelease else ""
    title = f"[{release.name}]({release.url})" if release.url else release.name
    message = f"*{owner}/{name}*\n{prerelease}{title}"
    description = sanitize_description(release.description)
    if description:
        message = f"{message}\n{description}"
    return message


_WHITESPACE = re.compile(r"\s")


def message_length(text: str) -> int:
    """Length in UTF-16 code units, the unit Telegram limits messages by."""
    return len(text.encode("utf-16-le")) // 2


def _fitting_prefix(text: str, max_length: int) -> int:
    """Number of characters of ``text`` that fit in ``max_length`` UTF-16 units."""
    units = 0
    for index, char in enumerate(text):
        units += 2 if ord(char) > 0xFFFF else 1
        if units > max_length:
            # A lone astral character wider than the limit is still emitted.
            return max(index, 1)
    return len(text)


def split_long_message(message: str, max_length: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """
    Split a message into pieces of at most ``max_length`` UTF-16 units.

    Each piece ends after the last line break that fits, otherwise after the
    last whitespace that fits, otherwise exactly at the limit. Surrogate
    pairs are never split. Joining the pieces gives back the original message.
    """
    if max_length <= 0:
        raise ValueError("max_length must be positive")
    if message_length(message) <= max_length:
        return [message]

    pieces = []
    rest = message
    while rest:
        end = _fitting_prefix(rest, max_length)
        if end == len(rest):
            pieces.append(rest)
            break
        window = rest[:end]
        cut = max(window.rfind("\n"), window.rfind("\r")) + 1
        if not cut:
            spaces = [match.end() for match in _WHITESPACE.finditer(window)]
            cut = spaces[-1] if spaces else end
        pieces.append(rest[:cut])
        rest = rest[cut:]
    return pieces


def latest_releases(repository: Repository) -> List[Release]:
    """
    The most recent release, preceded by the most recent stable one when
    the latest is a pre-release.
    """
    if not repository.releases:
        return list(repository.tags[-1:])

    last = repository.releases[-1]
    if not last.is_prerelease:
        return [last]
    stable = next((r for r in reversed(repository.releases) if not r.is_prerelease), None)
    return [stable, last] if stable else [last]


def release_messages(update: UpdateRecord, max_length: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """All message pieces for an update, in delivery order."""
    messages = []
    for release in update.releases:
        messages.extend(split_long_message(full_release_message(update.owner, update.name, release), max_length))
    return messages


class Notifier:
    """Sends update messages to every recipient watching the repository."""

    def __init__(self, send_message: SendMessage, max_message_length: int = MAX_MESSAGE_LENGTH):
        self.send_message = send_message
        self.max_message_length = max_message_length

    def notify_users(self, updates: Iterable[UpdateRecord]) -> List[Tuple[int, str]]:
        """
        Deliver each update to its watchers.

        A failing recipient is logged and skipped; the remaining recipients
        and updates are still delivered.

        Returns:
            (user_id, "owner/name") pairs whose delivery failed
        """
        failures = []
        for update in updates or []:
            if not update.releases or not update.watched_users:
                continue
            messages = release_messages(update, self.max_message_length)

            for user_id in update.watched_users:
                try:
                    for message in messages:
                        self.send_message(user_id, message)
                except Exception as e:
                    logger.error(f"Failed to notify user {user_id} about {update.full_name}: {e}")
                    failures.append((user_id, update.full_name))

        return failures
