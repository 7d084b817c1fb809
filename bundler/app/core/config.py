"""
Centralized configuration for the LaTeX bundle service.

Pydantic v2 settings management: strict validation, no secret leakage,
fast failure on invalid configuration.
"""

from functools import lru_cache
from typing import Annotated

from pydantic import AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

BucketName = Annotated[
    str,
    Field(
        pattern=r"^[a-z0-9][a-z0-9._-]{1,62}$",
        description="Storage bucket identifier",
    ),
]

SensitiveEnv = Annotated[
    SecretStr,
    Field(description="Sensitive credential, redacted from logs"),
]


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Application settings parsed from the environment.

    Every value has a local-development default so that the engine can be
    exercised against an in-memory blob store without any configuration.
    """

    # ---------------------------------------------------------------------
    # Blob store (Supabase Storage compatible REST API)
    # ---------------------------------------------------------------------

    storage_url: Annotated[
        AnyHttpUrl,
        Field(
            default="http://localhost:54321",
            description="Base URL of the storage API",
        ),
    ]

    storage_service_key: SensitiveEnv = SecretStr("")

    assets_bucket: BucketName = "assets"

    http_timeout_seconds: Annotated[
        float,
        Field(default=30.0, gt=0, description="Per-request storage timeout"),
    ]

    download_retries: Annotated[
        int,
        Field(
            default=3,
            ge=1,
            le=10,
            description="Attempts per storage call on transient failures",
        ),
    ]

    # ---------------------------------------------------------------------
    # Expansion and reference synthesis
    # ---------------------------------------------------------------------

    max_include_depth: Annotated[
        int,
        Field(
            default=25,
            ge=1,
            le=100,
            description="Hard ceiling on nested \\input/\\include levels",
        ),
    ]

    reference_fallback_limit: Annotated[
        int,
        Field(
            default=50,
            ge=0,
            description=(
                "Number of bibliography entries listed when no citation "
                "is detected in the merged source"
            ),
        ),
    ]

    # ---------------------------------------------------------------------
    # Operational Boundaries
    # ---------------------------------------------------------------------

    max_package_mb: Annotated[
        int,
        Field(
            default=50,
            ge=1,
            le=500,
            description="Upper bound on the summed size of a download package",
        ),
    ]

    max_asset_mb: Annotated[
        int,
        Field(
            default=25,
            ge=1,
            le=100,
            description="Maximum decoded size of a single uploaded asset",
        ),
    ]

    model_config = SettingsConfigDict(
        env_prefix="BUNDLER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )


# -------------------------------------------------------------------------
# Settings Dependency Provider
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Dependency injection provider for application settings.

    Parsed once per process.
    """
    return Settings()
