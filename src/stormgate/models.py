# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/stormgate

"""
Data models for the stormgate package.
"""

from collections.abc import Iterable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic.alias_generators import to_camel


class ResourceStatus(StrEnum):
    ENABLED = "ENABLED"
    DISABLED = "DISABLED"
    UNVERIFIED = "UNVERIFIED"


class ApiKey(BaseModel):
    """
    API key pair used to authenticate against the identity provider.

    The secret is a `SecretStr` so it never shows up in logs or reprs.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)
    secret: SecretStr


class ProviderResource(BaseModel):
    """Base for provider resources: camelCase JSON in, snake_case attributes out."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    href: str


class Account(ProviderResource):
    """
    A user account held by the identity provider.

    This model is frozen so the per-request current user cannot be altered by handlers.
    """

    username: str | None = None
    email: str | None = None
    given_name: str | None = None
    surname: str | None = None
    full_name: str | None = None
    status: ResourceStatus = ResourceStatus.ENABLED
    groups: list[str] = Field(default_factory=list, description="Names of the groups the account belongs to.")

    @field_validator("groups", mode="before")
    @classmethod
    def extract_group_names(cls, v: Any) -> list[str]:
        """
        Accepts an expanded group collection (`{"items": [{"name": ...}]}`) or a plain list of names.
        An unexpanded collection reference (`{"href": ...}`) yields no groups.
        """
        if v is None:
            return []
        if isinstance(v, dict):
            v = v.get("items") or []
        names: list[str] = []
        for item in v:
            if isinstance(item, dict):
                name = item.get("name")
                if name:
                    names.append(str(name))
            elif item is not None:
                names.append(str(item))
        return names

    def in_groups(self, groups: Iterable[str], require_all: bool = True) -> bool:
        """
        Checks group membership by name.

        Args:
            groups: Group names to check.
            require_all: When True the account must belong to every group, otherwise to at least one.

        Returns:
            bool: Whether the membership requirement is met. An empty requirement is always met.
        """
        wanted = list(groups)
        if not wanted:
            return True
        member_of = set(self.groups)
        if require_all:
            return all(group in member_of for group in wanted)
        return any(group in member_of for group in wanted)

    def __repr__(self) -> str:
        # Identifying fields are redacted
        return (
            f"Account(href={self.href!r}, username='<REDACTED>', email='<REDACTED>', "
            f"status={self.status.value!r}, groups={self.groups!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()


class ApplicationData(ProviderResource):
    """Plain data of a provider application, without the client binding."""

    name: str
    status: ResourceStatus = ResourceStatus.ENABLED
    description: str | None = None
