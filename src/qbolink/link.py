"""
QBOLink — wires config, storage, client, and services together.

The ``QBOLink`` class is the top-level entry point for applications and the
CLI: build it once from config and reach every service through it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from qbolink.auth.codec import build_codec
from qbolink.auth.flows import ConnectionFlow
from qbolink.auth.gate import AccessGate
from qbolink.auth.lifecycle import TokenLifecycleManager
from qbolink.auth.state_store import OAuthStateStore
from qbolink.auth.token_store import TokenStore
from qbolink.clients.base import AccountingClient
from qbolink.clients.quickbooks import QuickBooksClient
from qbolink.config import QBOLinkConfig
from qbolink.models import utcnow
from qbolink.storage.database import Database
from qbolink.sync.adapters import AdapterRegistry, default_registry
from qbolink.sync.engine import SyncEngine
from qbolink.sync.records import SyncedRecordStore

logger = logging.getLogger("qbolink")


@dataclass
class QBOLink:
    """Top-level container for the qbolink services.

    Usage::

        from qbolink.link import QBOLink

        link = QBOLink.from_config("qbolink.yaml")
        result = link.flow.connect("42")
        customers = link.engine("customer")
        await customers.pull("42")
        await link.close()
    """

    config: QBOLinkConfig
    db: Database
    client: AccountingClient
    registry: AdapterRegistry = field(default_factory=default_registry)
    clock: Callable[[], datetime] = utcnow

    tokens: TokenStore = field(init=False, repr=False)
    states: OAuthStateStore = field(init=False, repr=False)
    manager: TokenLifecycleManager = field(init=False, repr=False)
    gate: AccessGate = field(init=False, repr=False)
    flow: ConnectionFlow = field(init=False, repr=False)
    records: SyncedRecordStore = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.tokens = TokenStore(self.db, build_codec(self.config.tokens))
        self.states = OAuthStateStore(self.db, clock=self.clock)
        self.manager = TokenLifecycleManager(
            self.client, self.tokens, self.states, self.config, clock=self.clock,
        )
        self.gate = AccessGate(self.manager)
        self.flow = ConnectionFlow(self.manager, self.gate)
        self.records = SyncedRecordStore(self.db)
        logger.debug("qbolink initialized with %d sync adapters", len(self.registry))

    @classmethod
    def from_config(cls, config_path: str | None = None, **overrides: Any) -> QBOLink:
        """Create a QBOLink from a config file or keyword arguments."""
        config = QBOLinkConfig.load(config_path, **overrides)
        db = Database(config.database_url)
        db.create_all()
        return cls(config=config, db=db, client=QuickBooksClient(config))

    def engine(self, entity_type: str) -> SyncEngine:
        """Sync engine for a registered entity type."""
        return SyncEngine.for_entity(
            self.registry, entity_type, self.gate, self.client, self.records, clock=self.clock,
        )

    async def close(self) -> None:
        await self.client.close()
        self.db.dispose()
