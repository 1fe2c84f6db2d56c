"""
Tests for settings.
"""

from baremint.config import Settings


class TestDatabaseUrl:
    """Test async driver selection for the database URL."""

    def test_postgres_scheme(self):
        settings = Settings(_env_file=None, database_url="postgres://u:p@db:5432/app")
        assert settings.async_database_url == "postgresql+asyncpg://u:p@db:5432/app"

    def test_postgresql_scheme(self):
        settings = Settings(_env_file=None, database_url="postgresql://u:p@db:5432/app")
        assert settings.async_database_url == "postgresql+asyncpg://u:p@db:5432/app"

    def test_async_urls_unchanged(self):
        """URLs that already name an async driver pass through."""
        for url in ("postgresql+asyncpg://u:p@db/app", "sqlite+aiosqlite:///./baremint.db"):
            assert Settings(_env_file=None, database_url=url).async_database_url == url

    def test_blank_secret_is_unset(self):
        settings = Settings(_env_file=None, helius_webhook_secret="  ")
        assert settings.helius_webhook_secret is None
