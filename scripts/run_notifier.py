#!/usr/bin/env python3
"""Script to poll GitHub for new releases and notify subscribers on Telegram."""

import logging
import os
import signal
import sys
import threading

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from releasebot.application.notifier import Notifier
from releasebot.application.release_service import ReleaseSyncService
from releasebot.application.scheduler import Scheduler
from releasebot.config import Settings
from releasebot.infrastructure.database import DatabaseRepository
from releasebot.infrastructure.github_client import GitHubGraphQLClient
from releasebot.infrastructure.telegram_client import TelegramBotClient

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings):
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    if settings.log_file:
        handler = logging.FileHandler(settings.log_file, encoding='utf-8')
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def main():
    """Run the release polling jobs until interrupted."""
    settings = Settings.from_env()
    configure_logging(settings)

    if not settings.github_token:
        logger.warning("GITHUB_TOKEN not found. Using unauthenticated requests (limited rate).")

    db_repository = DatabaseRepository()
    scheduler = Scheduler()
    try:
        db_repository.connect()
        db_repository.initialize_schema()

        github_client = GitHubGraphQLClient(token=settings.github_token)
        telegram_client = TelegramBotClient(token=settings.telegram_token)
        service = ReleaseSyncService(github_client, db_repository, fetch_depth=settings.fetch_depth)
        notifier = Notifier(telegram_client.send_message, settings.max_message_length)

        scheduler.schedule('releases', service.update_releases, settings.update_interval)
        scheduler.subscribe('releases', notifier.notify_users)

        scheduler.schedule('privateReleases', service.update_private_releases, settings.update_interval)
        scheduler.subscribe('privateReleases', notifier.notify_users)

        logger.info("Worker ready")

        stop = threading.Event()
        signal.signal(signal.SIGTERM, lambda *_: stop.set())
        try:
            stop.wait()
        except KeyboardInterrupt:
            pass

        logger.info("Shutting down")
        return 0

    except Exception as e:
        logger.error(f"Notifier failed: {e}", exc_info=True)
        return 1
    finally:
        scheduler.stop_all(timeout=30)
        db_repository.close()


if __name__ == "__main__":
    sys.exit(main())
