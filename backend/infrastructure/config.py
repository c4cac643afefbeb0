import re
from typing import Annotated, List, Optional, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode
from celery.schedules import crontab


def parse_cron(line: str) -> crontab:
    """Builds a celery crontab from a 5-field cron line (m h dom mon dow)."""
    fields = line.split()
    if len(fields) != 5:
        raise ValueError(f"Invalid cron line: {line}")
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    try:
        schedule = crontab(
            minute=minute,
            hour=hour,
            day_of_month=day_of_month,
            month_of_year=month_of_year,
            day_of_week=day_of_week,
        )
    except Exception as e:
        raise ValueError(f"Invalid cron line: {line}") from e
    return schedule


class Settings(BaseSettings):
    PROJECT_NAME: str = "Identity Hash Sync"
    # Env
    ENVIRONMENT: str = "development"

    # Identity server
    SERVER_NAME: str = "localhost"
    BASE_URL: str = "https://localhost"

    # Databases
    DATABASE_URL: str = "postgresql+asyncpg://identity:identity_secret@db:5432/identity_db"
    USERDB_URL: str = "postgresql+asyncpg://identity:identity_secret@db:5432/userdb"
    # Homeserver view, left empty when the identity server has no access to it
    MATRIX_DATABASE_URL: Optional[str] = None

    # Cron
    CRON_SERVICE: bool = True
    PEPPER_CRON: str = "0 0 * * *"
    UPDATE_USERS_CRON: str = "*/10 * * * *"
    CHECK_QUOTA_CRON: str = "0 1 * * *"
    UPDATE_FEDERATION_HASHES_CRON: str = "*/30 * * * *"

    # Federation. Comma or whitespace separated when given as a string.
    FEDERATION_SERVERS: Annotated[List[str], NoDecode] = []
    FEDERATED_IDENTITY_SERVICES: Annotated[List[str], NoDecode] = []
    IS_FEDERATED_IDENTITY_SERVICE: bool = False

    # Hashes
    HASH_JOBS: int = 5
    PEPPER_LENGTH: int = 32

    # HTTP
    HTTP_TIMEOUT: float = 30.0
    FEDERATION_HTTP_ATTEMPTS: int = 1

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    @field_validator("FEDERATION_SERVERS", "FEDERATED_IDENTITY_SERVICES", mode="before")
    @classmethod
    def split_addresses(cls, v: Union[str, List[str], None]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [a for a in re.split(r"[,\s]+", v) if a]
        return [a for a in v if a]

    @field_validator("PEPPER_CRON", "UPDATE_USERS_CRON", "CHECK_QUOTA_CRON", "UPDATE_FEDERATION_HASHES_CRON")
    @classmethod
    def validate_cron(cls, v: str) -> str:
        parse_cron(v)
        return v

    @field_validator("MATRIX_DATABASE_URL", mode="before")
    @classmethod
    def empty_matrix_url(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @field_validator("HASH_JOBS", "PEPPER_LENGTH", "FEDERATION_HTTP_ATTEMPTS")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @property
    def matrix_db_configured(self) -> bool:
        return bool(self.MATRIX_DATABASE_URL)

    @property
    def has_federated_peers(self) -> bool:
        """True when local identifiers may leave this server through a federated identity service."""
        return bool(self.FEDERATED_IDENTITY_SERVICES) or self.IS_FEDERATED_IDENTITY_SERVICE

    class Config:
        case_sensitive = True
        env_file = ".env"

settings = Settings()
