"""
Domain engines for VRroom Server.

This module handles:
- The social graph state machine (requests, friendships, blocks)
- Content records, the bundle version chain and the active pointer
- Share groups and the visibility policy shared by both surfaces
- Search and the ticket stub

Invariants:
    - Every multi-record mutation is a single store closure
    - All content reads go through VisibilityPolicy
    - Blob calls happen only between closures

How to change safely:
    - New operations follow the read-check-write-in-one-closure pattern
"""

from .content import BundleUpload, ContentEngine, UploadedFile, guess_content_type
from .search import SearchPage, SearchService
from .shares import ShareGroupService
from .social_graph import SocialGraph, UserView
from .tickets import TicketService
from .updates import UNSET, ContentUpdate, ProfileUpdate
from .visibility import Grant, VisibilityPolicy

__all__ = [
    "ContentEngine",
    "BundleUpload",
    "UploadedFile",
    "guess_content_type",
    "SearchService",
    "SearchPage",
    "ShareGroupService",
    "SocialGraph",
    "UserView",
    "TicketService",
    "UNSET",
    "ContentUpdate",
    "ProfileUpdate",
    "VisibilityPolicy",
    "Grant",
]
