"""Application service polling GitHub and persisting new releases."""

import logging
from typing import Dict, List, Optional, Sequence

from releasebot.domain.diff import diff_snapshots
from releasebot.domain.release import RepoKey, Repository, UpdateRecord
from releasebot.infrastructure.database import DatabaseRepository
from releasebot.infrastructure.github_client import GitHubAPIError, GitHubGraphQLClient

logger = logging.getLogger(__name__)


class ReleaseSyncService:
    """Service comparing fetched releases with stored ones and saving what changed."""

    def __init__(
        self,
        github_client: GitHubGraphQLClient,
        database_repository: DatabaseRepository,
        fetch_depth: int = 1,
    ):
        """
        Initialize release sync service.

        Args:
            github_client: GitHub API client
            database_repository: Database repository for tracked repositories
            fetch_depth: Number of most recent releases and tags fetched per repository
        """
        self.github_client = github_client
        self.database_repository = database_repository
        self.fetch_depth = fetch_depth

    def update_releases(self) -> List[UpdateRecord]:
        """
        Poll every tracked repository with the default credential.

        Returns:
            Updates that were persisted in this cycle
        """
        try:
            repositories = self.database_repository.get_all_repositories()
        except Exception as e:
            logger.error(f"Could not load tracked repositories: {e}", exc_info=True)
            return []

        if not repositories:
            return []

        stored = {repository.key: repository for repository in repositories}
        updates = self._sync(stored, list(stored))

        if updates:
            logger.info(f"Repositories updated: {len(updates)}")
        return updates

    def update_private_releases(self) -> List[UpdateRecord]:
        """
        Poll each user's subscriptions with that user's own token.

        Returns:
            Updates that were persisted in this cycle, for all users
        """
        try:
            users = self.database_repository.get_all_users()
        except Exception as e:
            logger.error(f"Could not load users: {e}", exc_info=True)
            return []

        all_updates: List[UpdateRecord] = []
        for user in users:
            if not user.token or not user.subscriptions:
                continue

            try:
                repositories = self.database_repository.get_user_subscriptions(user.user_id)
            except Exception as e:
                logger.error(f"Could not load subscriptions of user {user.user_id}: {e}")
                continue

            stored = {repository.key: repository for repository in repositories}
            updates = self._sync(stored, list(stored), token=user.token)

            if updates:
                logger.info(f"Repositories updated for user {user.user_id}: {len(updates)}")
            all_updates.extend(updates)

        return all_updates

    def _sync(
        self,
        stored: Dict[RepoKey, Repository],
        repos: Sequence[RepoKey],
        token: Optional[str] = None,
    ) -> List[UpdateRecord]:
        if not repos:
            return []

        try:
            snapshots = self.github_client.fetch_many(repos, self.fetch_depth, token=token)
        except GitHubAPIError as e:
            logger.error(f"Exception while requesting releases: {e}")
            return []

        updates = diff_snapshots(stored, snapshots)

        persisted = []
        for update in updates:
            try:
                # Only what this cycle actually wrote is delivered; a
                # concurrent job may have stored part or all of it already.
                written = self.database_repository.apply_update(update)
            except Exception as e:
                # Dropped here; the next cycle computes the same update again.
                logger.error(f"Could not persist update for {update.full_name}: {e}")
                continue
            if written is not None:
                persisted.append(written)
        return persisted
