from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Input ceilings
    MAX_FILE_SIZE_BYTES: int = 100 * 1024 * 1024  # 100MB
    MAX_ROWS: int = 200_000
    MAX_COLUMNS: int = 500
    MAX_CELLS: int = 5_000_000
    LARGE_SHEET_WARNING_ROWS: int = 100_000

    # Container preflight (xlsx only)
    PREFLIGHT_MIN_FILE_BYTES: int = 8 * 1024 * 1024
    SHEET_XML_WARN_BYTES: int = 150 * 1024 * 1024
    SHEET_XML_MAX_BYTES: int = 400 * 1024 * 1024

    # Cleaning behaviour
    FAST_MODE_ROW_THRESHOLD: int = 50_000
    PREVIEW_ROWS: int = 20
    AUTO_SELECT_MIN_VALID: int = 3
    AUTO_SELECT_SCAN_ROWS: int = 10
    COUNTRY_CODE: str = "91"
    MOBILE_FIRST_DIGITS: str = "6789"
    REJECTED_SEQUENCES: list[str] = [
        "6789012345",
        "7890123456",
        "8901234567",
        "9012345678",
        "9876543210",
        "8765432109",
        "7654321098",
        "6543210987",
    ]
    MAX_NUMBERS_PER_CELL: int = 2
    MULTI_NUMBER_JOINER: str = " / "

    # Streaming + cooperative scheduling
    CSV_CHUNK_SIZE: int = 1024 * 1024
    PROCESS_BATCH_ROWS: int = 500
    YIELD_TIME_BUDGET_MS: int = 30
    STAT_SAMPLE_CAPACITY: int = 10_000

    # Export
    CSV_EXPORT_ROW_THRESHOLD: int = 150_000
    KEEP_ALL_CSV_EXPORT_ROW_THRESHOLD: int = 75_000
    MAX_CELL_TEXT_LENGTH: int = 32_767

    # Service
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    DEBUG: bool = False

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
