"""Factory functions for creating test release data."""

from typing import Iterable, Optional

from releasebot.domain.release import Release, RepoSnapshot, Repository, UpdateRecord


def create_test_release(
    name: str = "v1.0.0",
    description: str = "",
    is_prerelease: bool = False,
    url: Optional[str] = None,
) -> Release:
    """
    Factory for creating a release.

    Args:
        name: Tag name of the release
        description: Release notes
        is_prerelease: Pre-release flag
        url: Release page (defaults to a github.com URL built from the name)
    """
    if url is None:
        url = f"https://github.com/octo/repo/releases/tag/{name}"
    return Release(name=name, url=url, description=description, is_prerelease=is_prerelease)


def create_test_tag(name: str = "v1.0.0") -> Release:
    return Release.from_tag(name)


def create_test_repository(
    owner: str = "octo",
    name: str = "repo",
    releases: Iterable[Release] = (),
    tags: Iterable[Release] = (),
    watched_users: Iterable[int] = (1,),
) -> Repository:
    return Repository(
        owner=owner,
        name=name,
        releases=tuple(releases),
        tags=tuple(tags),
        watched_users=tuple(watched_users),
    )


def create_test_snapshot(
    owner: str = "octo",
    name: str = "repo",
    releases: Iterable[Release] = (),
    tags: Iterable[Release] = (),
) -> RepoSnapshot:
    return RepoSnapshot(owner=owner, name=name, releases=tuple(releases), tags=tuple(tags))


def create_test_update(
    owner: str = "octo",
    name: str = "repo",
    releases: Iterable[Release] = (),
    watched_users: Iterable[int] = (1,),
) -> UpdateRecord:
    releases = tuple(releases)
    return UpdateRecord(
        owner=owner,
        name=name,
        releases=releases,
        watched_users=tuple(watched_users),
        new_releases=releases,
    )
