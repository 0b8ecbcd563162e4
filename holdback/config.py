# holdback/config.py - Application configuration

import os
from typing import List

class Settings:
    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite:///./holdback.db"
    )

    # CORS
    CORS_ORIGINS: List[str] = os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173,http://localhost:8080"
    ).split(",")

    # Debug mode
    DEBUG: bool = os.getenv("DEBUG", "true").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Access gate
    DASHBOARD_PIN: str = os.getenv("DASHBOARD_PIN", "")
    PIN_COOKIE_NAME: str = "dashboard_pin"

    # Intranet holdback projects
    INTRANET_URL: str = os.getenv(
        "INTRANET_URL",
        "https://rws.ca/api/internal/projects/holdbacks/"
    )
    INTRANET_KEY: str = os.getenv("INTRANET_KEY", "")
    INTRANET_TIMEOUT_SECONDS: float = float(os.getenv("INTRANET_TIMEOUT_SECONDS", "15"))

    # Sync settings
    DEBOUNCE_MS: int = int(os.getenv("DEBOUNCE_MS", "500"))
    ECHO_TIMEOUT_SECONDS: float = float(os.getenv("ECHO_TIMEOUT_SECONDS", "10"))

    # Equipment groups
    MAX_EQUIPMENT_COLUMNS: int = int(os.getenv("MAX_EQUIPMENT_COLUMNS", "7"))

settings = Settings()
