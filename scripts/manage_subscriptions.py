#!/usr/bin/env python3
"""Script to manage which repositories a chat is subscribed to."""

import argparse
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from releasebot.application.notifier import latest_releases, short_release_message
from releasebot.config import Settings
from releasebot.domain.release import Recipient, parse_repo
from releasebot.infrastructure.database import DatabaseRepository
from releasebot.infrastructure.github_client import GitHubGraphQLClient

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    commands = parser.add_subparsers(dest="command", required=True)

    subscribe = commands.add_parser("subscribe", help="Watch a repository")
    subscribe.add_argument("user_id", type=int)
    subscribe.add_argument("repo", help="owner/name or https://github.com/owner/name")
    subscribe.add_argument("--group", action="store_true", help="The chat is a group")
    subscribe.add_argument("--title", help="Group title or user name")

    unsubscribe = commands.add_parser("unsubscribe", help="Stop watching a repository")
    unsubscribe.add_argument("user_id", type=int)
    unsubscribe.add_argument("repo")

    set_token = commands.add_parser("set-token", help="Store a token for private repositories")
    set_token.add_argument("user_id", type=int)
    set_token.add_argument("token", nargs="?", help="Omit to clear the token")

    list_cmd = commands.add_parser("list", help="Show latest releases of a chat's subscriptions")
    list_cmd.add_argument("user_id", type=int)

    remove = commands.add_parser("remove-repo", help="Stop tracking a repository for everyone")
    remove.add_argument("repo")

    return parser


def _repo_or_exit(text: str):
    repo = parse_repo(text)
    if repo is None:
        raise SystemExit(f"Not a repository: {text!r}")
    return repo


def run(args, db_repository: DatabaseRepository, github_client: GitHubGraphQLClient) -> int:
    if args.command == "subscribe":
        owner, name = _repo_or_exit(args.repo)
        user = db_repository.get_user(args.user_id)
        token = user.token if user else None
        if not github_client.can_access(owner, name, token=token):
            logger.error(f"Repository {owner}/{name} does not exist or is not accessible")
            return 1
        db_repository.create_user(Recipient(
            user_id=args.user_id,
            kind="group" if args.group else "private",
            title=args.title if args.group else None,
            first_name=None if args.group else args.title,
        ))
        created = db_repository.subscribe(args.user_id, owner, name)
        print(f"Subscribed to {owner}/{name}" + (" (new repository)" if created else ""))

    elif args.command == "unsubscribe":
        owner, name = _repo_or_exit(args.repo)
        db_repository.unsubscribe(args.user_id, owner, name)
        print(f"Unsubscribed from {owner}/{name}")

    elif args.command == "set-token":
        db_repository.set_user_token(args.user_id, args.token)
        print("Token stored" if args.token else "Token cleared")

    elif args.command == "list":
        for repository in db_repository.get_user_subscriptions(args.user_id):
            releases = latest_releases(repository)
            if not releases:
                print(f"{repository.full_name}: no releases yet")
            for release in releases:
                print(short_release_message(repository.owner, repository.name, release))

    elif args.command == "remove-repo":
        owner, name = _repo_or_exit(args.repo)
        db_repository.remove_repository(owner, name)
        print(f"Removed {owner}/{name}")

    return 0


def main(argv=None):
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()

    db_repository = DatabaseRepository()
    try:
        db_repository.connect()
        return run(args, db_repository, GitHubGraphQLClient(token=settings.github_token))
    except Exception as e:
        logger.error(f"Command failed: {e}", exc_info=True)
        return 1
    finally:
        db_repository.close()


if __name__ == "__main__":
    sys.exit(main())
