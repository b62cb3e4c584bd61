"""
VRroom Server - backend for the VRroom social/content platform.

This package implements the domain engine shared by both HTTP front ends:
- Credential store and session/token issuer (accounts, profiles, JWTs)
- Social graph engine (friend requests, friendships, blocks)
- Content & versioning engine (bundles, share groups, visibility)
- Flat REST surface (aiohttp) with its own route table

The resource-oriented /v1 surface lives in the sibling vrroom_gateway package
and talks to the same engines through a shared Services container.

Architecture:
    ┌──────────────┐   ┌──────────────┐
    │ Flat surface │   │ /v1 gateway  │
    │  (aiohttp)   │   │  (FastAPI)   │
    └──────┬───────┘   └──────┬───────┘
           └────────┬─────────┘
                    ▼
         ┌─────────────────────┐      ┌────────────┐
         │  Engines + Policy   │─────▶│ Blob store │
         └──────────┬──────────┘      │    (S3)    │
                    ▼                 └────────────┘
         ┌─────────────────────┐
         │ Store (SQLite, one  │
         │  process-wide lock) │
         └─────────────────────┘

Invariants:
    - Every store access goes through Store.execute / Store.run
    - Blob store calls never happen while the store lock is held
    - Both surfaces share one token secret and one VisibilityPolicy

How to change safely:
    - Keep multi-record mutations inside a single store closure
    - Add new record types to store.records and the schema together
"""

from ._version import __version__

__all__ = ["__version__"]
