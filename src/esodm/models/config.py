"""Collection configuration — immutable address and behavior of a repository."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

ALL_TENANTS = "*"


class ModelConfig(BaseModel):
    """Immutable description of one logical, tenant-scoped collection.

    The collection is addressed by its alias ``<tenant>_<base_name>``; a
    ``*`` tenant matches every tenant and may only be read.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    tenant: str = Field(default=ALL_TENANTS, description="Tenant prefix of the alias")
    base_name: str = Field(min_length=1, description="Collection name without tenant")
    immediate_refresh: bool | str = Field(default=True, description="Value sent as the 'refresh' parameter")
    schema_model: Any = Field(default=None, description="Optional pydantic model validating document data")

    @property
    def alias(self) -> str:
        return f"{self.tenant}_{self.base_name}"

    @property
    def is_wildcard(self) -> bool:
        return "*" in self.alias


def with_tenant(config: ModelConfig, new_tenant: str) -> ModelConfig:
    """Return a copy of ``config`` addressing ``new_tenant``."""
    if not new_tenant or "_" in new_tenant:
        raise ValueError(f"Invalid tenant '{new_tenant}': must be non-empty and must not contain '_'.")
    return config.model_copy(update={"tenant": new_tenant})


def with_immediate_refresh(config: ModelConfig, immediate_refresh: bool | str) -> ModelConfig:
    """Return a copy of ``config`` with a different refresh behavior."""
    return config.model_copy(update={"immediate_refresh": immediate_refresh})


def parse_alias(alias: str) -> dict[str, str | None]:
    """Split an alias or physical index name into tenant, name and alias.

    Physical indices are named ``<alias>-<suffix>``.

    Example:
        >>> parse_alias("acme_users-1700000000000")
        {'tenant': 'acme', 'name': 'users', 'alias': 'acme_users'}
    """
    tenant, separator, rest = alias.partition("_")
    if not separator or not rest:
        raise ValueError(f"Index '{alias}' is not in the '<tenant>_<name>' form.")
    name = rest.split("-", 1)[0]
    return {"tenant": tenant, "name": name, "alias": f"{tenant}_{name}"}
