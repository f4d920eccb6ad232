from functools import lru_cache

from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from REDSHIFT_GRANTS_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix='REDSHIFT_GRANTS_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    # Upper bound on concurrent per-identity introspection queries
    max_workers: int = 8

    # Service identities that are never listed or reconciled
    system_identities: tuple[str, ...] = ('rdsdb', 'awsuser')
    system_schemas: tuple[str, ...] = ('information_schema', 'pg_catalog', 'pg_toast')

    # Objects listed per schema in the object hierarchy
    hierarchy_limit: int = 1000


@lru_cache
def get_settings() -> Settings:
    return Settings()
