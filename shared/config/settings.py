"""
Application settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with defaults for development."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database (persistence collaborator for groups and encrypted messages)
    database_url: str = "sqlite:///./circle.db"

    # JWT Configuration
    # Tokens are issued by the main application; the gateway only verifies them.
    jwt_secret: str = "your-secret-key"
    jwt_algorithm: str = "HS256"

    # Development bypass: mock_jwt_token_<name> resolves against a fixed directory
    allow_mock_tokens: bool = True

    # CORS: comma-separated list of allowed origins (empty uses default localhost list)
    allowed_origins: str = ""

    # Server
    ws_gateway_port: int = 8001

    # Environment
    environment: str = "development"
    debug: bool = True

    # Waitroom: quorum needed before a group is formed. Fixed at startup.
    min_group_members: int = 3

    # WebSocket
    ws_max_message_size: int = 64 * 1024  # 64 KB, sender key bundles stay well below
    ws_receive_timeout: float = 90.0  # Close connections silent for this long

    # Persistence
    persistence_enabled: bool = True
    persistence_timeout: float = 2.0  # Seconds before a store call is abandoned
    message_history_limit: int = 50  # Default page size for stored history

    def validate_production_secrets(self) -> list[str]:
        """
        Validate that secrets are properly configured for production.
        Returns a list of validation errors. Empty list means all checks pass.
        """
        errors = []

        weak_secrets = {
            "your-secret-key",
            "your_super_secret_jwt_key_here",
            "secret",
            "password",
            "changeme",
            "default",
        }

        if self.environment == "production":
            if self.jwt_secret in weak_secrets or len(self.jwt_secret) < 32:
                errors.append(
                    "JWT_SECRET must be at least 32 characters and not a default value in production"
                )

            if self.allow_mock_tokens:
                errors.append("ALLOW_MOCK_TOKENS must be False in production")

            if self.debug:
                errors.append("DEBUG must be False in production")

            if not self.allowed_origins:
                errors.append(
                    "ALLOWED_ORIGINS must be set in production (comma-separated list of allowed domains)"
                )

        if self.min_group_members < 2:
            errors.append("MIN_GROUP_MEMBERS must be at least 2")

        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience exports
settings = get_settings()

# Direct access to commonly used settings
DATABASE_URL = settings.database_url
JWT_SECRET = settings.jwt_secret
MIN_GROUP_MEMBERS = settings.min_group_members
