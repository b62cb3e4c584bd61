"""
Typed partial updates with a tri-state per field.

Every optional field of an update is in exactly one of three states:

    UNSET   the field was absent from the request; leave it alone
    None    the field was sent as null; reset it to its default
    value   the field was sent with a value; apply it

Invariants:
    - from_payload() rejects values of the wrong type with ValidationError
    - apply() only touches fields that are not UNSET

How to change safely:
    - Add the field, its payload keys and its default in one place
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..errors import ValidationError
from ..store.records import Content, Profile


class _Unset:
    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


def _pick(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return UNSET


def _string(value: Any, name: str) -> Any:
    if value is UNSET or value is None or isinstance(value, str):
        return value
    raise ValidationError(f"Invalid value for {name}")


def _string_list(value: Any, name: str) -> Any:
    if value is UNSET or value is None:
        return value
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ValidationError(f"Invalid value for {name}")


def _boolean(value: Any, name: str) -> Any:
    if value is UNSET or value is None or isinstance(value, bool):
        return value
    raise ValidationError(f"Invalid value for {name}")


@dataclass
class ProfileUpdate:
    display_name: Any = UNSET
    bio: Any = UNSET
    status: Any = UNSET

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ProfileUpdate:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid request format")
        return cls(
            display_name=_string(_pick(payload, "displayName", "display_name"), "displayName"),
            bio=_string(_pick(payload, "bio"), "bio"),
            status=_string(_pick(payload, "status"), "status"),
        )

    def is_empty(self) -> bool:
        return all(v is UNSET for v in (self.display_name, self.bio, self.status))

    def apply(self, profile: Profile) -> None:
        if self.display_name is not UNSET:
            profile.display_name = self.display_name or ""
        if self.bio is not UNSET:
            profile.bio = self.bio or ""
        if self.status is not UNSET:
            profile.status = self.status or ""


@dataclass
class ContentUpdate:
    name: Any = UNSET
    description: Any = UNSET
    content_warning_tags: Any = UNSET
    is_public: Any = UNSET

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ContentUpdate:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid request format")
        return cls(
            name=_string(_pick(payload, "name"), "name"),
            description=_string(_pick(payload, "description"), "description"),
            content_warning_tags=_string_list(
                _pick(payload, "contentWarningTags", "content_warning_tags"),
                "contentWarningTags",
            ),
            is_public=_boolean(_pick(payload, "isPublic", "is_public"), "isPublic"),
        )

    def is_empty(self) -> bool:
        return all(
            v is UNSET
            for v in (self.name, self.description, self.content_warning_tags, self.is_public)
        )

    def apply(self, content: Content, now: int) -> None:
        """Apply the update; turning content public stamps public_at."""
        if self.name is not UNSET:
            content.name = self.name or ""
        if self.description is not UNSET:
            content.description = self.description or ""
        if self.content_warning_tags is not UNSET:
            content.content_warning_tags = list(self.content_warning_tags or [])
        if self.is_public is not UNSET:
            make_public = bool(self.is_public)
            if make_public and not content.is_public:
                content.public_at = now
            elif not make_public:
                content.public_at = None
            content.is_public = make_public
