"""Comparison of fetched releases against stored repository state."""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from releasebot.domain.release import Release, RepoKey, RepoSnapshot, Repository, UpdateRecord

logger = logging.getLogger(__name__)


def _named(releases: Iterable[Release]) -> List[Release]:
    # Entries without a name cannot be deduplicated.
    return [release for release in releases if release.name]


def find_new_releases(old_releases: Sequence[Release], new_releases: Sequence[Release]) -> List[Release]:
    """Return the entries of ``new_releases`` whose name is not in ``old_releases``."""
    known = {release.name for release in _named(old_releases)}
    return [release for release in _named(new_releases) if release.name not in known]


def find_changed_releases(old_releases: Sequence[Release], new_releases: Sequence[Release]) -> List[Release]:
    """
    Return the entries of ``new_releases`` that match a stored entry by name
    but differ from it in description or pre-release flag.

    URLs are not compared.
    """
    old_by_name: Dict[str, Release] = {}
    for release in _named(old_releases):
        old_by_name.setdefault(release.name, release)

    changed = []
    for release in _named(new_releases):
        old = old_by_name.get(release.name)
        if old is None:
            continue
        if old.description != release.description or old.is_prerelease != release.is_prerelease:
            changed.append(release)
    return changed


def diff_repository(stored: Repository, snapshot: RepoSnapshot) -> Optional[UpdateRecord]:
    """
    Compute the update for one repository, or None if nothing changed.

    New tags are folded into the release stream after the new releases,
    skipping any name that is already in the stream or already known as a
    release of the repository.
    """
    new_releases = find_new_releases(stored.releases, snapshot.releases)
    changed_releases = find_changed_releases(stored.releases, snapshot.releases)
    new_tags = find_new_releases(stored.tags, snapshot.tags)

    if not (new_releases or changed_releases or new_tags):
        return None

    merged: List[Release] = list(new_releases)
    seen = {release.name for release in merged}
    seen.update(release.name for release in _named(stored.releases))
    seen.update(release.name for release in _named(snapshot.releases))
    for tag in new_tags:
        if tag.name not in seen:
            merged.append(tag)
            seen.add(tag.name)
    merged.extend(changed_releases)

    return UpdateRecord(
        owner=stored.owner,
        name=stored.name,
        releases=tuple(merged),
        watched_users=tuple(stored.watched_users),
        new_releases=tuple(new_releases),
        new_tags=tuple(new_tags),
        changed_releases=tuple(changed_releases),
    )


def diff_snapshots(
    stored_by_key: Dict[RepoKey, Repository],
    snapshots: Iterable[RepoSnapshot],
) -> List[UpdateRecord]:
    """Diff every snapshot against its stored repository, in snapshot order."""
    updates = []
    for snapshot in snapshots:
        stored = stored_by_key.get(snapshot.key)
        if stored is None:
            logger.debug(f"Skipping {snapshot.owner}/{snapshot.name}: no longer tracked")
            continue
        update = diff_repository(stored, snapshot)
        if update is not None:
            updates.append(update)
    return updates
