# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Type-safe configuration schemas for foundry-overlay.

Every section gets its own frozen pydantic model:
  - frozen=True: immutability after construction
  - extra="forbid": unknown fields cause immediate failure
  - validate_default=True: even defaults get type-checked

Defaults describe the real upstream (foundry-rs/foundry on GitHub), so running
without a config file does the right thing.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from foundry_overlay.sync.platforms import DEFAULT_PLATFORMS


class GlobalConfig(BaseModel):
    """Cross-cutting settings: schema version and logging."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(
        description="Schema version for compatibility tracking, e.g. '1.0.0'"
    )
    log_level: str = Field(
        default="INFO",
        description="One of DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional path for file-based log output",
    )

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level '{value}'")
        return upper


class SyncConfig(BaseModel):
    """
    Everything the release synchronization pipeline needs to know about the
    upstream project and about where the manifest lives.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    owner: str = Field(default="foundry-rs", description="GitHub owner of the upstream repository")
    repository: str = Field(default="foundry", description="Upstream repository name")
    api_base: str = Field(
        default="https://api.github.com",
        description="Base URL of the release-index API",
    )
    download_base: str = Field(
        default="https://github.com",
        description="Base URL release archives are downloaded from",
    )
    binaries: list[str] = Field(
        default_factory=lambda: ["forge", "cast", "anvil", "chisel"],
        min_length=1,
        description="Binaries expected at the root of every platform archive",
    )
    platforms: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PLATFORMS),
        min_length=1,
        description="Platform keys written into each manifest entry",
    )
    manifest_path: str = Field(
        default="sources.json",
        description="Manifest file read and rewritten by the update command",
    )
    verify_attestations: bool = Field(
        default=True,
        description="Turning this off skips provenance checks; only for releases that predate attestations",
    )
    attestation_owner: Optional[str] = Field(
        default=None,
        description="Owner whose build pipeline must have produced the binaries; defaults to owner",
    )
    attestation_command: list[str] = Field(
        default_factory=lambda: ["gh", "attestation", "verify"],
        min_length=1,
        description="Verifier invocation; the binary path and --owner are appended",
    )
    http_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        le=3600,
        description="Socket timeout for release-index queries and downloads",
    )
    download_deadline_seconds: float = Field(
        default=1800.0,
        gt=0,
        le=86400,
        description="Wall-clock limit for a single archive download",
    )
    attestation_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        le=3600,
        description="Upper bound for a single attestation check",
    )
    max_workers: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Platforms processed concurrently",
    )

    @field_validator("binaries", "platforms")
    @classmethod
    def _no_duplicates(cls, value: list[str]) -> list[str]:
        if len(set(value)) != len(value):
            raise ValueError("entries must be unique")
        return value

    @property
    def expected_owner(self) -> str:
        return self.attestation_owner or self.owner


class FoundryOverlayConfig(BaseModel):
    """
    Top-level config container.

    A YAML file holds a `global:` section and optionally a `sync:` section;
    a missing `sync:` means upstream defaults.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    global_config: GlobalConfig = Field(alias="global")
    sync: SyncConfig = Field(default_factory=SyncConfig)
