"""Configuration for the channel proxy."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

NIXEXPRS_FILENAME = "nixexprs.tar.xz"


class Settings(BaseSettings):
    """Process-wide settings, read from the environment once at startup."""

    model_config = SettingsConfigDict(
        env_prefix="NIX_CHANNEL_PROXY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Channel
    upstream_channel_url: str = Field(
        default="https://nixos.org/channels/nixos-19.03",
        description="Base URL of the upstream channel",
    )
    persistent_nixexprs_path: Path = Field(
        default=Path("/tmp/nixexprs.tar.xz"),
        description="Where the last published archive is kept",
    )
    build_expression: str | None = Field(
        default=None,
        description="Nix expression to pre-build against each new channel",
    )

    # Pipeline
    work_dir: Path | None = Field(
        default=None,
        description=(
            "Parent directory for job temporary trees; defaults to the directory "
            "holding persistent_nixexprs_path"
        ),
    )
    curl_command: str = Field(default="curl", description="Download tool executable")
    tar_command: str = Field(default="tar", description="Archive extractor executable")
    nix_build_command: str = Field(default="nix-build", description="Build tool executable")

    # Server
    host: str = Field(default="0.0.0.0", description="HTTP bind host")
    port: int = Field(default=8000, ge=0, le=65535, description="HTTP bind port")

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("build_expression")
    @classmethod
    def _blank_expression_disables_build(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def nixexprs_url(self) -> str:
        """Full URL of the upstream channel archive."""
        url = self.upstream_channel_url
        if not url.endswith("/"):
            url += "/"
        return url + NIXEXPRS_FILENAME
