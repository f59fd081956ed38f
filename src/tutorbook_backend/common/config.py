'''
Holds all the configurations
'''
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """
    Manages application configuration using environment variables.
    """
    # Application Metadata
    APP_NAME: str = "TutorBook Backend"
    APP_VERSION: str = "0.1.0"
    APP_DESCRIPTION: str = "The backend API for the TutorBook class and fee management platform."
    TEST_MODE: bool = False

    # Database URL
    DATABASE_URL_PROD: str
    DATABASE_URL_TEST: str
    @property
    def database_url(self) -> str:
        """
        Dynamically returns the correct database URL based on the test_mode flag.
        """
        if self.TEST_MODE:
            return self.DATABASE_URL_TEST
        return self.DATABASE_URL_PROD

    # JWT Settings
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Cache
    CACHE_BACKEND: str = "memory"  # "memory" or "redis"
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_DEFAULT_TTL_SECONDS: int = 300

    # Monthly report cache windows
    REPORT_CACHE_TTL_HOURS: int = 4
    REPORT_CACHE_RETENTION_HOURS: int = 24

    # Session series expansion limits
    SERIES_MAX_SESSIONS: int = 50
    SERIES_SCAN_DAYS: int = 365
    SERIES_DEFAULT_MAX_OCCURRENCES: int = 100

    # Audit-note timestamps are rendered in this zone
    LOCAL_TIMEZONE: str = "Asia/Ho_Chi_Minh"

    BACKEND_CORS_ORIGINS: list[str] = []

    class Config:
        env_file = ".env" # automatically loads the .env

# Create a single, importable instance of the settings
settings = Settings()
