"""PostgreSQL storage for tracked repositories and their recipients."""

import logging
import os
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator, List, Optional, Sequence

import psycopg2
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from releasebot.domain.diff import diff_repository, find_new_releases
from releasebot.domain.release import Recipient, Release, RepoKey, RepoSnapshot, Repository, UpdateRecord

logger = logging.getLogger(__name__)


def _releases_from_json(items) -> tuple:
    return tuple(Release.from_dict(item) for item in items or [])


def _releases_to_json(releases: Sequence[Release]) -> Json:
    return Json([release.to_dict() for release in releases])


def _repository_from_row(row) -> Repository:
    return Repository(
        owner=row["owner"],
        name=row["name"],
        releases=_releases_from_json(row["releases"]),
        tags=_releases_from_json(row["tags"]),
        watched_users=tuple(row["watched_users"] or ()),
    )


def _recipient_from_row(row) -> Recipient:
    return Recipient(
        user_id=row["user_id"],
        kind=row["kind"],
        username=row["username"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        title=row["title"],
        token=row["token"],
        subscriptions=tuple((item["owner"], item["name"]) for item in row["subscriptions"] or []),
    )


def merge_new_releases(stored: Sequence[Release], incoming: Sequence[Release]) -> List[Release]:
    """Append incoming entries whose name is not stored yet."""
    merged = list(stored)
    names = {release.name for release in merged}
    for release in find_new_releases(merged, incoming):
        if release.name not in names:
            merged.append(release)
            names.add(release.name)
    return merged


def replace_release(stored: Sequence[Release], release: Release) -> List[Release]:
    """Replace the stored entry that has the same name as ``release``."""
    return [release if existing.name == release.name else existing for existing in stored]


class DatabaseRepository:
    """Repository for storing tracked repositories and users in PostgreSQL."""

    def __init__(self, connection_string: Optional[str] = None, statement_timeout_ms: Optional[int] = None):
        """
        Initialize database repository.

        Args:
            connection_string: PostgreSQL connection string. If None, uses env vars.
            statement_timeout_ms: Per-statement timeout. If None, uses POSTGRES_STATEMENT_TIMEOUT_MS.
        """
        if connection_string is None:
            db_host = os.getenv("POSTGRES_HOST", "localhost")
            db_port = os.getenv("POSTGRES_PORT", "5432")
            db_name = os.getenv("POSTGRES_DB", "releasebot")
            db_user = os.getenv("POSTGRES_USER", "postgres")
            db_password = os.getenv("POSTGRES_PASSWORD", "postgres")

            connection_string = (
                f"host={db_host} port={db_port} dbname={db_name} "
                f"user={db_user} password={db_password}"
            )

        if statement_timeout_ms is None:
            statement_timeout_ms = int(os.getenv("POSTGRES_STATEMENT_TIMEOUT_MS", "30000"))

        self.connection_string = connection_string
        self.statement_timeout_ms = statement_timeout_ms
        self.pool: Optional[ThreadedConnectionPool] = None

    def connect(self):
        """Initialize connection pool."""
        try:
            self.pool = ThreadedConnectionPool(
                1, 5, self.connection_string,
                options=f"-c statement_timeout={self.statement_timeout_ms}",
                connect_timeout=10,
            )
            logger.info("Database connection pool created")
        except psycopg2.Error as e:
            logger.error(f"Error creating connection pool: {e}")
            raise

    def close(self):
        """Close connection pool."""
        if self.pool:
            self.pool.closeall()
            self.pool = None
            logger.info("Database connection pool closed")

    def _get_connection(self):
        """Get a connection from the pool."""
        if not self.pool:
            self.connect()
        return self.pool.getconn()

    def _return_connection(self, conn):
        """Return a connection to the pool."""
        if self.pool:
            self.pool.putconn(conn)

    @contextmanager
    def _transaction(self, action: str) -> Iterator:
        """Yield a dict cursor inside a transaction, rolling back on error."""
        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error {action}: {e}")
            raise
        finally:
            self._return_connection(conn)

    def initialize_schema(self):
        """Create database tables if they don't exist."""
        with self._transaction("initializing schema") as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS repositories (
                    owner VARCHAR(255) NOT NULL,
                    name VARCHAR(255) NOT NULL,
                    releases JSONB NOT NULL DEFAULT '[]'::jsonb,
                    tags JSONB NOT NULL DEFAULT '[]'::jsonb,
                    watched_users BIGINT[] NOT NULL DEFAULT '{}',
                    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (owner, name)
                );

                CREATE TABLE IF NOT EXISTS users (
                    user_id BIGINT PRIMARY KEY,
                    kind VARCHAR(32) NOT NULL DEFAULT 'private',
                    username VARCHAR(255),
                    first_name VARCHAR(255),
                    last_name VARCHAR(255),
                    title VARCHAR(255),
                    token TEXT,
                    subscriptions JSONB NOT NULL DEFAULT '[]'::jsonb,
                    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_repositories_watched_users
                    ON repositories USING GIN (watched_users);
            """)
        logger.info("Database schema initialized")

    # Repositories

    def list_tracked_repositories(self) -> List[RepoKey]:
        """Get (owner, name) of every tracked repository."""
        with self._transaction("listing repositories") as cur:
            cur.execute("SELECT owner, name FROM repositories ORDER BY owner, name")
            return [(row["owner"], row["name"]) for row in cur.fetchall()]

    def get_repository(self, owner: str, name: str) -> Optional[Repository]:
        with self._transaction("getting repository") as cur:
            cur.execute(
                "SELECT owner, name, releases, tags, watched_users FROM repositories "
                "WHERE owner = %s AND name = %s",
                (owner, name),
            )
            row = cur.fetchone()
            return _repository_from_row(row) if row else None

    def get_all_repositories(self) -> List[Repository]:
        with self._transaction("getting repositories") as cur:
            cur.execute(
                "SELECT owner, name, releases, tags, watched_users FROM repositories ORDER BY owner, name"
            )
            return [_repository_from_row(row) for row in cur.fetchall()]

    def add_repository(self, owner: str, name: str) -> bool:
        """
        Start tracking a repository.

        Returns:
            True if the repository was created, False if it already existed
        """
        with self._transaction("adding repository") as cur:
            cur.execute(
                "INSERT INTO repositories (owner, name) VALUES (%s, %s) "
                "ON CONFLICT (owner, name) DO NOTHING",
                (owner, name),
            )
            created = cur.rowcount == 1
        if created:
            logger.info(f"Repository {owner}/{name} added")
        return created

    def remove_repository(self, owner: str, name: str):
        """Stop tracking a repository and drop it from every subscription list."""
        with self._transaction("removing repository") as cur:
            cur.execute("DELETE FROM repositories WHERE owner = %s AND name = %s", (owner, name))
            cur.execute(
                "UPDATE users SET subscriptions = COALESCE(("
                "SELECT jsonb_agg(item) FROM jsonb_array_elements(subscriptions) AS item "
                "WHERE item <> %s::jsonb), '[]'::jsonb) "
                "WHERE subscriptions @> %s::jsonb",
                (Json({"owner": owner, "name": name}), Json([{"owner": owner, "name": name}])),
            )
        logger.info(f"Repository {owner}/{name} removed")

    def _lock_repository(self, cur, owner: str, name: str) -> Optional[Repository]:
        cur.execute(
            "SELECT owner, name, releases, tags, watched_users FROM repositories "
            "WHERE owner = %s AND name = %s FOR UPDATE",
            (owner, name),
        )
        row = cur.fetchone()
        return _repository_from_row(row) if row else None

    def _write_releases(self, cur, repository: Repository, releases: Sequence[Release], tags: Sequence[Release]):
        cur.execute(
            "UPDATE repositories SET releases = %s, tags = %s, updated_at = CURRENT_TIMESTAMP "
            "WHERE owner = %s AND name = %s",
            (_releases_to_json(releases), _releases_to_json(tags), repository.owner, repository.name),
        )

    def _apply(self, cur, owner: str, name: str, new_releases: Sequence[Release],
               new_tags: Sequence[Release], changed_releases: Sequence[Release],
               watched_users: Optional[Sequence[int]] = None) -> Optional[UpdateRecord]:
        """
        Write what is still new or changed against the locked row.

        Returns the part of the update that was actually written, or None
        when the row already holds all of it (another job got there first)
        or the repository is gone.
        """
        repository = self._lock_repository(cur, owner, name)
        if repository is None:
            logger.warning(f"Repository {owner}/{name} is no longer tracked; update skipped")
            return None

        remaining = diff_repository(repository, RepoSnapshot(
            owner=owner,
            name=name,
            releases=tuple(new_releases) + tuple(changed_releases),
            tags=tuple(new_tags),
        ))
        if remaining is None:
            logger.info(f"Update for {owner}/{name} was already stored")
            return None

        releases = merge_new_releases(repository.releases, remaining.new_releases)
        for release in remaining.changed_releases:
            releases = replace_release(releases, release)
        tags = merge_new_releases(repository.tags, remaining.new_tags)
        self._write_releases(cur, repository, releases, tags)

        if watched_users is not None:
            remaining = replace(remaining, watched_users=tuple(watched_users))
        return remaining

    def upsert_releases(self, owner: str, name: str, new_releases: Sequence[Release], new_tags: Sequence[Release]) -> bool:
        """
        Append releases and tags whose names are not stored yet.

        Appending an already stored name is a no-op, so repeated or
        concurrent writes of the same data converge.

        Returns:
            True if anything was written
        """
        with self._transaction("upserting releases") as cur:
            return self._apply(cur, owner, name, new_releases, new_tags, ()) is not None

    def apply_changed_release(self, owner: str, name: str, release: Release) -> bool:
        """Overwrite the stored release that has the same name."""
        with self._transaction("applying changed release") as cur:
            return self._apply(cur, owner, name, (), (), (release,)) is not None

    def apply_update(self, update: UpdateRecord) -> Optional[UpdateRecord]:
        """
        Persist an update in one transaction.

        Items the row already holds are dropped, so when two jobs race on
        the same change only one of them gets it back for delivery.

        Returns:
            The written part of the update, keeping its watchers, or None
        """
        with self._transaction(f"applying update for {update.full_name}") as cur:
            return self._apply(
                cur, update.owner, update.name,
                update.new_releases, update.new_tags, update.changed_releases,
                watched_users=update.watched_users,
            )

    # Users

    def create_user(self, recipient: Recipient) -> bool:
        """
        Create a user unless it already exists.

        Returns:
            True if the user was created
        """
        with self._transaction("creating user") as cur:
            cur.execute(
                "INSERT INTO users (user_id, kind, username, first_name, last_name, title) "
                "VALUES (%s, %s, %s, %s, %s, %s) ON CONFLICT (user_id) DO NOTHING",
                (
                    recipient.user_id, recipient.kind, recipient.username,
                    recipient.first_name, recipient.last_name, recipient.title,
                ),
            )
            created = cur.rowcount == 1
        if created:
            logger.info(f"User {recipient.display_name} created")
        return created

    def get_user(self, user_id: int) -> Optional[Recipient]:
        with self._transaction("getting user") as cur:
            cur.execute("SELECT * FROM users WHERE user_id = %s", (user_id,))
            row = cur.fetchone()
            return _recipient_from_row(row) if row else None

    def get_all_users(self) -> List[Recipient]:
        with self._transaction("getting users") as cur:
            cur.execute("SELECT * FROM users ORDER BY user_id")
            return [_recipient_from_row(row) for row in cur.fetchall()]

    def set_user_token(self, user_id: int, token: Optional[str]):
        """Store (or clear, with None) the private access token of a user."""
        with self._transaction("setting user token") as cur:
            cur.execute("UPDATE users SET token = %s WHERE user_id = %s", (token, user_id))

    def get_user_subscriptions(self, user_id: int) -> List[Repository]:
        """Get every repository the user watches."""
        with self._transaction("getting user subscriptions") as cur:
            cur.execute(
                "SELECT owner, name, releases, tags, watched_users FROM repositories "
                "WHERE %s = ANY(watched_users) ORDER BY owner, name",
                (user_id,),
            )
            return [_repository_from_row(row) for row in cur.fetchall()]

    def subscribe(self, user_id: int, owner: str, name: str) -> bool:
        """
        Add the user to the repository's watchers and the repository to the
        user's subscriptions, in one transaction. Creates the repository and
        the user when missing.

        Returns:
            True if the repository was newly created
        """
        subscription = Json([{"owner": owner, "name": name}])
        with self._transaction("subscribing user") as cur:
            cur.execute(
                "INSERT INTO repositories (owner, name) VALUES (%s, %s) "
                "ON CONFLICT (owner, name) DO NOTHING",
                (owner, name),
            )
            created = cur.rowcount == 1
            cur.execute(
                "INSERT INTO users (user_id) VALUES (%s) ON CONFLICT (user_id) DO NOTHING",
                (user_id,),
            )
            cur.execute(
                "UPDATE repositories SET watched_users = array_append(watched_users, %s) "
                "WHERE owner = %s AND name = %s AND NOT (%s = ANY(watched_users))",
                (user_id, owner, name, user_id),
            )
            cur.execute(
                "UPDATE users SET subscriptions = subscriptions || %s::jsonb "
                "WHERE user_id = %s AND NOT subscriptions @> %s::jsonb",
                (subscription, user_id, subscription),
            )
        logger.info(f"User {user_id} subscribed to {owner}/{name}")
        return created

    def unsubscribe(self, user_id: int, owner: str, name: str):
        """Remove the user/repository link from both sides in one transaction."""
        with self._transaction("unsubscribing user") as cur:
            cur.execute(
                "UPDATE repositories SET watched_users = array_remove(watched_users, %s) "
                "WHERE owner = %s AND name = %s",
                (user_id, owner, name),
            )
            cur.execute(
                "UPDATE users SET subscriptions = COALESCE(("
                "SELECT jsonb_agg(item) FROM jsonb_array_elements(subscriptions) AS item "
                "WHERE item <> %s::jsonb), '[]'::jsonb) "
                "WHERE user_id = %s",
                (Json({"owner": owner, "name": name}), user_id),
            )
        logger.info(f"User {user_id} unsubscribed from {owner}/{name}")
