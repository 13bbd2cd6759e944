"""
Centralized configuration management for the broadcaster.

This module provides a Pydantic Settings-based configuration system that:
- Validates environment variables at startup
- Groups platform client credentials, HTTP, storage and logging settings
- Exposes which platforms are enabled for this deployment
- Supports .env file loading

Usage:
    from broadcaster.config import get_settings

    settings = get_settings()
    for platform in settings.enabled_platforms:
        ...
"""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .types.social import SocialPlatform


# =============================================================================
# Platform Settings
# =============================================================================


class LinkedInSettings(BaseSettings):
    """Configuration for the LinkedIn OAuth2 app and API endpoints."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    linkedin_client_id: Optional[str] = Field(
        default=None,
        description="OAuth2 client ID from the LinkedIn developer portal",
    )
    linkedin_client_secret: Optional[SecretStr] = Field(
        default=None,
        description="OAuth2 client secret from the LinkedIn developer portal",
    )
    linkedin_authorization_url: str = Field(
        default="https://www.linkedin.com/oauth/v2/authorization",
        description="LinkedIn OAuth2 authorization endpoint",
    )
    linkedin_token_url: str = Field(
        default="https://www.linkedin.com/oauth/v2/accessToken",
        description="LinkedIn OAuth2 token endpoint",
    )
    linkedin_api_base: str = Field(
        default="https://api.linkedin.com/v2",
        description="Base URL for LinkedIn v2 API calls",
    )
    linkedin_scopes: str = Field(
        default="openid profile w_member_social",
        description="Space-separated OAuth2 scopes",
    )

    @property
    def is_configured(self) -> bool:
        """Check if LinkedIn client credentials are present."""
        return bool(self.linkedin_client_id and self.linkedin_client_secret)


class TwitterSettings(BaseSettings):
    """Configuration for the X/Twitter OAuth2 (PKCE) app and API endpoints."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    twitter_client_id: Optional[str] = Field(
        default=None,
        description="OAuth2 client ID from the X developer portal",
    )
    twitter_client_secret: Optional[SecretStr] = Field(
        default=None,
        description="OAuth2 client secret (confidential client)",
    )
    twitter_authorization_url: str = Field(
        default="https://twitter.com/i/oauth2/authorize",
        description="X OAuth2 authorization endpoint",
    )
    twitter_token_url: str = Field(
        default="https://api.twitter.com/2/oauth2/token",
        description="X OAuth2 token endpoint",
    )
    twitter_api_base: str = Field(
        default="https://api.twitter.com/2",
        description="Base URL for X v2 API calls",
    )
    twitter_scopes: str = Field(
        default="tweet.read tweet.write users.read media.write offline.access",
        description="Space-separated OAuth2 scopes",
    )

    @property
    def is_configured(self) -> bool:
        """Check if X client credentials are present."""
        return bool(self.twitter_client_id and self.twitter_client_secret)


class MastodonSettings(BaseSettings):
    """Configuration for a Mastodon instance application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    mastodon_host: Optional[str] = Field(
        default=None,
        description="Instance base URL, e.g. https://mastodon.social",
    )
    mastodon_client_id: Optional[str] = Field(
        default=None,
        description="Client key of the application registered on the instance",
    )
    mastodon_client_secret: Optional[SecretStr] = Field(
        default=None,
        description="Client secret of the application registered on the instance",
    )
    mastodon_scopes: str = Field(
        default="read:accounts write:statuses write:media",
        description="Space-separated OAuth2 scopes",
    )

    @property
    def is_configured(self) -> bool:
        """Check if the Mastodon instance and app credentials are present."""
        return bool(
            self.mastodon_host and self.mastodon_client_id and self.mastodon_client_secret
        )

    @property
    def base_url(self) -> str:
        """Instance URL without a trailing slash."""
        return (self.mastodon_host or "").rstrip("/")


class BlueskySettings(BaseSettings):
    """Configuration for the AT Protocol service Bluesky accounts sign in to."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    bluesky_enabled: bool = Field(
        default=False,
        description="Offer Bluesky as a publishing target",
    )
    bluesky_service: str = Field(
        default="https://bsky.social",
        description="PDS base URL accounts sign in to",
    )
    bluesky_app_base: str = Field(
        default="https://bsky.app",
        description="Web app URL used to build links to created posts",
    )

    @property
    def is_configured(self) -> bool:
        """Bluesky needs no app registration, only a service URL."""
        return bool(self.bluesky_enabled and self.bluesky_service)

    @property
    def base_url(self) -> str:
        """Service URL without a trailing slash."""
        return self.bluesky_service.rstrip("/")


# =============================================================================
# HTTP Settings
# =============================================================================


class HttpSettings(BaseSettings):
    """Configuration for the shared outbound HTTP client."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Timeout in seconds for platform API requests",
    )
    http_user_agent: str = Field(
        default="broadcaster/1.0",
        description="User-Agent header sent to platforms",
    )
    max_concurrent_targets: int = Field(
        default=4,
        ge=1,
        description="Maximum platforms published to in parallel per broadcast",
    )


# =============================================================================
# Publish Settings
# =============================================================================


class PublishSettings(BaseSettings):
    """Configuration for post validation and OAuth callbacks."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Public URL of this service, used to build OAuth callback URLs",
    )
    link_previews_enabled: bool = Field(
        default=True,
        description="Fetch title and thumbnail for shared links",
    )

    def callback_url(self, platform: SocialPlatform) -> str:
        """OAuth redirect URI registered with the platform."""
        return f"{self.public_base_url.rstrip('/')}/api/{platform.value}/callback"


# =============================================================================
# Security Settings
# =============================================================================


class SecuritySettings(BaseSettings):
    """Configuration for security features."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    dev_mode: bool = Field(
        default=False,
        description="Enable development mode (disables API key checks)",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


# =============================================================================
# Logging Settings
# =============================================================================


class LoggingSettings(BaseSettings):
    """Configuration for logging."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format_json: bool = Field(
        default=False,
        description="Force JSON log format in development",
    )
    request_logging_enabled: bool = Field(
        default=True,
        description="Enable request logging middleware",
    )


# =============================================================================
# Storage Settings
# =============================================================================


class StorageSettings(BaseSettings):
    """Configuration for local storage."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    credential_storage_dir: str = Field(
        default="./data/credentials",
        description="Directory for per-user platform credentials",
    )
    media_storage_dir: str = Field(
        default="./data/media",
        description="Directory holding uploaded media, one file per handle",
    )
    api_key_storage_path: str = Field(
        default="./data/api_keys.json",
        description="Path for API key storage",
    )


# =============================================================================
# Main Settings Class
# =============================================================================


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration groups.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    linkedin: LinkedInSettings = Field(default_factory=LinkedInSettings)
    twitter: TwitterSettings = Field(default_factory=TwitterSettings)
    mastodon: MastodonSettings = Field(default_factory=MastodonSettings)
    bluesky: BlueskySettings = Field(default_factory=BlueskySettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    publish: PublishSettings = Field(default_factory=PublishSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @property
    def enabled_platforms(self) -> List[SocialPlatform]:
        """Platforms configured for this deployment, in registry order."""
        configured = {
            SocialPlatform.LINKEDIN: self.linkedin.is_configured,
            SocialPlatform.TWITTER: self.twitter.is_configured,
            SocialPlatform.MASTODON: self.mastodon.is_configured,
            SocialPlatform.BLUESKY: self.bluesky.is_configured,
        }
        return [platform for platform in SocialPlatform if configured[platform]]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.security.is_production

    @property
    def is_dev_mode(self) -> bool:
        """Check if development mode is enabled."""
        return self.security.dev_mode

    def get_config_summary(self) -> dict:
        """
        Get a summary of configuration status for logging.

        Returns the configuration status WITHOUT exposing any secrets.
        """
        return {
            "environment": self.security.environment,
            "dev_mode": self.is_dev_mode,
            "enabled_platforms": [p.value for p in self.enabled_platforms],
            "http_timeout_seconds": self.http.http_timeout_seconds,
            "max_concurrent_targets": self.http.max_concurrent_targets,
            "link_previews_enabled": self.publish.link_previews_enabled,
            "log_level": self.logging.log_level,
        }


# =============================================================================
# Settings Singleton
# =============================================================================


@lru_cache()
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Uses lru_cache to ensure settings are only loaded once.
    Call reload_settings() to pick up environment changes.
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Reload settings from environment.

    This clears the cache and returns fresh settings.
    Useful for testing or after environment changes.
    """
    get_settings.cache_clear()
    return get_settings()
