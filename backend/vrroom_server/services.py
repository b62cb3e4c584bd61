"""
Composition root for VRroom Server.

Services wires one Store, one blob store, one token issuer and one
visibility policy into the engines. Both HTTP surfaces receive the same
Services instance, so they share the store lock, the signing secret and the
visibility rules.

Invariants:
    - Exactly one Store per process
    - Both surfaces see the same VisibilityPolicy and TokenIssuer

How to change safely:
    - Construct new engines here and pass them to both surfaces
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .auth.accounts import AccountService
from .auth.passwords import PasswordHasher
from .auth.tokens import TokenIssuer
from .blob.base import BlobStore, create_blob_store
from .config import ServerConfig
from .engine.content import ContentEngine
from .engine.search import SearchService
from .engine.shares import ShareGroupService
from .engine.social_graph import SocialGraph
from .engine.tickets import TicketService
from .engine.visibility import VisibilityPolicy
from .store.database import Store

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Every engine the HTTP surfaces dispatch to."""

    config: ServerConfig
    store: Store
    blobs: BlobStore
    tokens: TokenIssuer
    visibility: VisibilityPolicy
    accounts: AccountService
    social: SocialGraph
    content: ContentEngine
    shares: ShareGroupService
    search: SearchService
    tickets: TicketService

    @classmethod
    def build(
        cls,
        config: ServerConfig,
        store: Store | None = None,
        blobs: BlobStore | None = None,
    ) -> Services:
        """Build the engine graph from configuration.

        Args:
            config: Server configuration
            store: Existing store to use (opened from config when omitted)
            blobs: Existing blob store to use (created from config when omitted)
        """
        store = store or Store(
            config.storage.database_path,
            busy_timeout_ms=config.storage.busy_timeout_ms,
            wal_mode=config.storage.wal_mode,
        )
        blobs = blobs or create_blob_store(config)
        tokens = TokenIssuer(config.auth)
        visibility = VisibilityPolicy()
        return cls(
            config=config,
            store=store,
            blobs=blobs,
            tokens=tokens,
            visibility=visibility,
            accounts=AccountService(store, PasswordHasher(config.passwords), tokens, config.auth),
            social=SocialGraph(store),
            content=ContentEngine(store, blobs, visibility),
            shares=ShareGroupService(store),
            search=SearchService(store, visibility),
            tickets=TicketService(store),
        )

    async def start(self) -> None:
        await self.blobs.connect()

    async def close(self) -> None:
        await self.blobs.close()
        self.store.close()
