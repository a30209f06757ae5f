"""
Unit tests for infrastructure/database.py

The connection pool is replaced by MagicMocks; statements are checked by
their parameters rather than by running PostgreSQL.
"""

import unittest
from unittest.mock import MagicMock

import psycopg2

from releasebot.domain.release import Release, UpdateRecord
from releasebot.infrastructure.database import (
    DatabaseRepository,
    merge_new_releases,
    replace_release,
)
from tests.fixtures.release_factory import create_test_release, create_test_tag, create_test_update


def stored_row(releases=(), tags=(), watched_users=(1,)):
    return {
        "owner": "octo",
        "name": "repo",
        "releases": [r.to_dict() for r in releases],
        "tags": [t.to_dict() for t in tags],
        "watched_users": list(watched_users),
    }


class TestMergeHelpers(unittest.TestCase):

    def test_merge_appends_unknown_names(self):
        v1, v2 = create_test_release("v1"), create_test_release("v2")

        self.assertEqual(merge_new_releases([v1], [v1, v2]), [v1, v2])

    def test_merge_is_idempotent(self):
        v1, v2 = create_test_release("v1"), create_test_release("v2")
        once = merge_new_releases([v1], [v2])

        self.assertEqual(merge_new_releases(once, [v2]), once)

    def test_merge_skips_duplicate_incoming_names(self):
        v2 = create_test_release("v2")

        self.assertEqual(merge_new_releases([], [v2, v2]), [v2])

    def test_replace_release(self):
        old = Release(name="v1", description="a")
        new = Release(name="v1", description="b")
        other = Release(name="v2")

        self.assertEqual(replace_release([old, other], new), [new, other])


class TestDatabaseRepository(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseRepository("dbname=test", statement_timeout_ms=1000)
        self.db.pool = MagicMock()
        self.conn = self.db.pool.getconn.return_value
        self.cursor = self.conn.cursor.return_value.__enter__.return_value

    def _update_params(self):
        for args in self.cursor.execute.call_args_list:
            if args.args[0].startswith("UPDATE repositories SET releases"):
                return args.args[1]
        self.fail("releases were not written")

    def _release_writes(self):
        return [
            c for c in self.cursor.execute.call_args_list
            if c.args[0].startswith("UPDATE repositories SET releases")
        ]

    def test_apply_update_writes_merged_lists(self):
        v1_old = Release(name="v1", description="a")
        v1_new = Release(name="v1", description="a-updated")
        v2 = create_test_release("v2")
        tag = create_test_tag("t1")
        self.cursor.fetchone.return_value = stored_row(releases=[v1_old])
        update = UpdateRecord(
            owner="octo", name="repo", releases=(v2, tag, v1_new), watched_users=(1, 2),
            new_releases=(v2,), new_tags=(tag,), changed_releases=(v1_new,),
        )

        written = self.db.apply_update(update)

        self.assertEqual(written.releases, (v2, tag, v1_new))
        self.assertEqual(written.watched_users, (1, 2))
        releases_json, tags_json, owner, name = self._update_params()
        self.assertEqual(releases_json.adapted, [v1_new.to_dict(), v2.to_dict()])
        self.assertEqual(tags_json.adapted, [tag.to_dict()])
        self.assertEqual((owner, name), ("octo", "repo"))
        self.conn.commit.assert_called_once()
        self.db.pool.putconn.assert_called_once_with(self.conn)

    def test_apply_update_already_stored_writes_nothing(self):
        v2 = create_test_release("v2")
        self.cursor.fetchone.return_value = stored_row(releases=[create_test_release("v1"), v2])

        written = self.db.apply_update(create_test_update(releases=[v2]))

        self.assertIsNone(written)
        self.assertEqual(self._release_writes(), [])
        self.conn.commit.assert_called_once()

    def test_apply_update_returns_only_the_part_not_yet_stored(self):
        v2, v3 = create_test_release("v2"), create_test_release("v3")
        self.cursor.fetchone.return_value = stored_row(releases=[v2])

        written = self.db.apply_update(create_test_update(releases=[v2, v3], watched_users=[4]))

        self.assertEqual(written.releases, (v3,))
        self.assertEqual(written.new_releases, (v3,))
        self.assertEqual(written.watched_users, (4,))
        releases_json, _, _, _ = self._update_params()
        self.assertEqual(releases_json.adapted, [v2.to_dict(), v3.to_dict()])

    def test_upsert_of_known_names_changes_nothing(self):
        v1 = create_test_release("v1")
        self.cursor.fetchone.return_value = stored_row(releases=[v1])

        self.assertFalse(self.db.upsert_releases("octo", "repo", [v1], []))
        self.assertEqual(self._release_writes(), [])

    def test_apply_changed_release(self):
        self.cursor.fetchone.return_value = stored_row(releases=[Release(name="v1", is_prerelease=True)])

        self.db.apply_changed_release("octo", "repo", Release(name="v1", is_prerelease=False))

        releases_json, _, _, _ = self._update_params()
        self.assertFalse(releases_json.adapted[0]["isPrerelease"])

    def test_missing_repository_is_skipped(self):
        self.cursor.fetchone.return_value = None

        self.assertFalse(self.db.upsert_releases("octo", "gone", [create_test_release("v1")], []))

    def test_error_rolls_back_and_reraises(self):
        self.cursor.execute.side_effect = psycopg2.OperationalError("canceling statement due to statement timeout")

        with self.assertRaises(psycopg2.OperationalError):
            self.db.subscribe(1, "octo", "repo")

        self.conn.rollback.assert_called_once()
        self.conn.commit.assert_not_called()
        self.db.pool.putconn.assert_called_once_with(self.conn)

    def test_subscribe_updates_both_sides_in_one_transaction(self):
        self.cursor.rowcount = 1

        created = self.db.subscribe(5, "octo", "repo")

        self.assertTrue(created)
        statements = [c.args[0] for c in self.cursor.execute.call_args_list]
        self.assertTrue(any("watched_users = array_append" in s for s in statements))
        self.assertTrue(any("UPDATE users SET subscriptions" in s for s in statements))
        self.conn.commit.assert_called_once()

    def test_unsubscribe_updates_both_sides_in_one_transaction(self):
        self.db.unsubscribe(5, "octo", "repo")

        statements = [c.args[0] for c in self.cursor.execute.call_args_list]
        self.assertTrue(any("array_remove" in s for s in statements))
        self.assertTrue(any("UPDATE users SET subscriptions" in s for s in statements))
        self.conn.commit.assert_called_once()

    def test_get_repository(self):
        self.cursor.fetchone.return_value = stored_row(
            releases=[create_test_release("v1")], tags=[create_test_tag("t1")], watched_users=[3, 4],
        )

        repository = self.db.get_repository("octo", "repo")

        self.assertEqual(repository.releases, (create_test_release("v1"),))
        self.assertEqual(repository.tags, (create_test_tag("t1"),))
        self.assertEqual(repository.watched_users, (3, 4))

    def test_get_user_maps_subscriptions(self):
        self.cursor.fetchone.return_value = {
            "user_id": 9, "kind": "group", "username": None, "first_name": None,
            "last_name": None, "title": "Team", "token": "tok",
            "subscriptions": [{"owner": "octo", "name": "repo"}],
        }

        user = self.db.get_user(9)

        self.assertTrue(user.is_group)
        self.assertEqual(user.display_name, "Team")
        self.assertEqual(user.subscriptions, (("octo", "repo"),))

    def test_add_repository_reports_creation(self):
        self.cursor.rowcount = 1
        self.assertTrue(self.db.add_repository("octo", "repo"))

        self.cursor.rowcount = 0
        self.assertFalse(self.db.add_repository("octo", "repo"))

    def test_remove_repository_also_clears_subscriptions(self):
        self.db.remove_repository("octo", "repo")

        statements = [c.args[0] for c in self.cursor.execute.call_args_list]
        self.assertTrue(statements[0].startswith("DELETE FROM repositories"))
        self.assertTrue(statements[1].startswith("UPDATE users SET subscriptions"))
        self.conn.commit.assert_called_once()

    def test_list_tracked_repositories(self):
        self.cursor.fetchall.return_value = [{"owner": "a", "name": "x"}, {"owner": "b", "name": "y"}]

        self.assertEqual(self.db.list_tracked_repositories(), [("a", "x"), ("b", "y")])


if __name__ == "__main__":
    unittest.main()
