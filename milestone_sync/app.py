"""Engine factory for milestone-sync."""

import logging
from dataclasses import dataclass, field
from typing import Optional, Dict

from .config import Config, load_config
from .state.checker import SubmissionChecker
from .store.client import RecordStoreClient
from .sync.bus import ChangeBus
from .sync.view import MilestoneView
from .utils.logging_config import setup_logging


logger = logging.getLogger("milestone_sync.app")


@dataclass
class Engine:
    """Shared collaborators handed to every view."""
    config: Config
    client: RecordStoreClient
    checker: SubmissionChecker
    bus: ChangeBus
    views: Dict[str, MilestoneView] = field(default_factory=dict)

    def open_view(self, name: str, team_id: Optional[str]) -> MilestoneView:
        """Create a view wired to the shared checker and bus.

        Opening a view under a name already in use closes the old one.
        """
        previous = self.views.pop(name, None)
        if previous is not None:
            previous.close()
        view = MilestoneView(
            name,
            team_id,
            self.checker,
            self.bus,
            client=self.client,
            delays=self.config.reconcile.settle_delays
        )
        self.views[name] = view
        return view

    def close(self) -> None:
        """Close every view and the store session."""
        for view in self.views.values():
            view.close()
        self.views.clear()
        self.client.close()


def create_engine(
    config: Optional[Config] = None,
    client: Optional[RecordStoreClient] = None,
    configure_logging: bool = False
) -> Engine:
    """Create and wire the reconciliation engine.

    Args:
        config: Configuration (loaded from env / MILESTONE_SYNC_CONFIG if None)
        client: Record store client (built from config if None)
        configure_logging: Install the JSON log handler

    Returns:
        Configured Engine

    Raises:
        ValueError: If configuration validation fails
    """
    config = config or load_config()

    if configure_logging:
        setup_logging(level=config.logging.level, fmt=config.logging.format)

    errors = config.validate()
    if client is not None:
        # An injected client makes the store URL irrelevant.
        errors = [e for e in errors if 'STORE_URL' not in e]
    if errors:
        raise ValueError(f"Invalid configuration: {'; '.join(errors)}")

    client = client or RecordStoreClient.from_config(config.store)
    checker = SubmissionChecker(client.list_submissions, ttl_sec=config.cache.ttl_sec)

    logger.info(
        f"Engine created (ttl={config.cache.ttl_sec}s, "
        f"settle_delays={config.reconcile.settle_delays})"
    )
    return Engine(config=config, client=client, checker=checker, bus=ChangeBus())
