# caselookup/core/config.py
import os
import json
from datetime import datetime, timezone
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from typing import Optional
import logging

logger = logging.getLogger(__name__)

DOTENV_PATH = ".env"
# Field defaults below read the environment at import time.
load_dotenv(DOTENV_PATH)

CONFIG_FILE_PATH = os.getenv("CASELOOKUP_CONFIG_FILE", "config.json")

class PortalSelectors(BaseModel):
    # Login page
    LOGIN_PATH: str = "/Portal/Account/Login"
    EMAIL_INPUT: str = "input#UserName"
    PASSWORD_INPUT: str = "input#Password"
    LOGIN_BUTTON: str = "button[type='submit']"
    LOGIN_SUCCESS_TEXT: str = "Welcome, "
    LOGIN_INVALID_CREDENTIALS_TEXT: str = "Invalid Email or password"

    # Smart Search
    SEARCH_FORM_PATH: str = "/Portal/SmartSearch/SmartSearch/SmartSearch"
    SEARCH_RESULTS_PATH: str = "/Portal/SmartSearch/SmartSearchResults"
    SEARCH_CRITERIA_FIELD: str = "caseCriteria.SearchCriteria"
    SEARCH_CASES_FIELD: str = "caseCriteria.SearchCases"
    SEARCH_TROUBLE_TEXT: str = "Smart Search is having trouble processing your search"
    CASE_LINK_SELECTOR: str = "a.caseLink"
    CASE_ID_ATTRIBUTE: str = "data-caseid"

class AppSettings(BaseModel):
    PORTAL_URL: str = os.getenv("PORTAL_URL", "")
    DEFAULT_USER_AGENT: str = os.getenv(
        "DEFAULT_USER_AGENT",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/134.0.0.0 Safari/537.36",
    )

    PORT: int = Field(int(os.getenv("PORT", "8000")), gt=1023, lt=65536)
    HOST: str = os.getenv("HOST", "0.0.0.0")
    API_ACCESS_KEY: str = os.getenv("API_ACCESS_KEY", "CONFIG_ERROR_API_KEY_NOT_IN_ENV")
    DATA_DIRECTORY: str = os.getenv("DATA_DIRECTORY", "caselookup_data")
    DATABASE_FILENAME: str = os.getenv("DATABASE_FILENAME", "caselookup.db")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    # Fernet key for portal passwords at rest; generated into DATA_DIRECTORY when unset.
    CREDENTIALS_ENCRYPTION_KEY: Optional[str] = os.getenv("CREDENTIALS_ENCRYPTION_KEY") or None
    CREDENTIALS_KEY_FILENAME: str = os.getenv("CREDENTIALS_KEY_FILENAME", "credentials.key")

    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = Field(int(os.getenv("REDIS_PORT", "6379")), gt=0)
    REDIS_DB: int = Field(int(os.getenv("REDIS_DB", "0")), ge=0)
    REDIS_PASSWORD: Optional[str] = os.getenv("REDIS_PASSWORD") or None
    SEARCH_QUEUE_STREAM: str = os.getenv("SEARCH_QUEUE_STREAM", "caselookup:search")
    CASE_DATA_QUEUE_STREAM: str = os.getenv("CASE_DATA_QUEUE_STREAM", "caselookup:case-data")
    QUEUE_CONSUMER_GROUP: str = os.getenv("QUEUE_CONSUMER_GROUP", "caselookup-workers")

    SEARCH_WORKER_COUNT: int = Field(int(os.getenv("SEARCH_WORKER_COUNT", "2")), gt=0)
    QUEUE_POLL_INTERVAL_SECONDS: float = Field(float(os.getenv("QUEUE_POLL_INTERVAL_SECONDS", "1.0")), gt=0)
    QUEUE_VISIBILITY_TIMEOUT_SECONDS: int = Field(int(os.getenv("QUEUE_VISIBILITY_TIMEOUT_SECONDS", "360")), gt=0)
    QUEUE_RECEIVE_BATCH_SIZE: int = Field(int(os.getenv("QUEUE_RECEIVE_BATCH_SIZE", "5")), gt=0)
    QUEUE_DEDUPLICATION_WINDOW_SECONDS: int = Field(int(os.getenv("QUEUE_DEDUPLICATION_WINDOW_SECONDS", "300")), ge=0)
    SEARCH_QUEUE_BATCH_SIZE: int = 10

    PORTAL_REQUEST_TIMEOUT_SECONDS: float = Field(float(os.getenv("PORTAL_REQUEST_TIMEOUT_SECONDS", "20")), gt=0)
    PORTAL_MAX_REDIRECTS: int = Field(int(os.getenv("PORTAL_MAX_REDIRECTS", "10")), ge=0)
    LOGIN_TIMEOUT_SECONDS: int = Field(int(os.getenv("LOGIN_TIMEOUT_SECONDS", "60")), gt=0)
    TRACE_PORTAL_HTTP: bool = os.getenv("TRACE_PORTAL_HTTP", "false").lower() == "true"

    PROCESSING_TIMEOUT_MINUTES: int = Field(int(os.getenv("PROCESSING_TIMEOUT_MINUTES", "5")), gt=0)
    # Summaries written before this moment used an older shape and get rebuilt.
    CASE_SUMMARY_VERSION_DATE: datetime = datetime(2025, 4, 1, tzinfo=timezone.utc)
    SESSION_TTL_HOURS: int = Field(int(os.getenv("SESSION_TTL_HOURS", "23")), gt=0)

    ALERT_WEBHOOK_URL: Optional[str] = os.getenv("ALERT_WEBHOOK_URL") or None
    STAGE: str = os.getenv("STAGE", "dev")

    PORTAL_SELECTORS: PortalSelectors = Field(default_factory=PortalSelectors)

    @property
    def DATABASE_URL(self) -> str:
        abs_data_path = os.path.abspath(self.DATA_DIRECTORY)
        return f"sqlite:///{os.path.join(abs_data_path, self.DATABASE_FILENAME)}"

    class Config:
        extra = 'ignore'

_cached_settings: Optional[AppSettings] = None
CLIENT_CONFIG_KEYS = {"PORTAL_URL", "DEFAULT_USER_AGENT", "ALERT_WEBHOOK_URL", "TRACE_PORTAL_HTTP", "SEARCH_WORKER_COUNT"}

def load_settings() -> AppSettings:
    global _cached_settings
    if _cached_settings is None:
        try:
            current_values = AppSettings()

            if os.path.exists(CONFIG_FILE_PATH):
                try:
                    with open(CONFIG_FILE_PATH, 'r') as f:
                        json_config = json.load(f)
                    for key in CLIENT_CONFIG_KEYS:
                        if key in json_config and json_config[key] is not None:
                            setattr(current_values, key, json_config[key])
                    if "PORTAL_SELECTORS" in json_config and isinstance(json_config["PORTAL_SELECTORS"], dict):
                        try:
                            current_values.PORTAL_SELECTORS = PortalSelectors(**json_config["PORTAL_SELECTORS"])
                            logger.info(f"Loaded PORTAL_SELECTORS from {CONFIG_FILE_PATH}.")
                        except Exception as e_sel:
                            logger.warning(f"Error parsing PORTAL_SELECTORS from {CONFIG_FILE_PATH}: {e_sel}. Using defaults.")

                except Exception as e:
                    logger.error(f"Error reading or applying {CONFIG_FILE_PATH}: {e}. Using .env/defaults for client keys and selectors.")
            else:
                logger.debug(f"{CONFIG_FILE_PATH} not found. Using .env/defaults for client keys and selectors.")

            _cached_settings = current_values

            if _cached_settings.API_ACCESS_KEY == "CONFIG_ERROR_API_KEY_NOT_IN_ENV":
                logger.critical("API_ACCESS_KEY IS NOT SET IN .env! API will be inaccessible.")
            if not _cached_settings.PORTAL_URL:
                logger.critical("PORTAL_URL is not set. Portal authentication and case searches will fail.")

            data_loc = os.path.abspath(_cached_settings.DATA_DIRECTORY)
            if not os.path.exists(data_loc):
                try:
                    os.makedirs(data_loc, exist_ok=True)
                    logger.info(f"Created data directory during settings load: {data_loc}")
                except Exception as e:
                    logger.critical(f"CRITICAL: Could not create data directory {data_loc} during settings load: {e}")

            logger.info("Application settings processed.")
            logger.debug(f"Effective settings: "
                         f"PortalURL='{_cached_settings.PORTAL_URL}', "
                         f"Redis='{_cached_settings.REDIS_HOST}:{_cached_settings.REDIS_PORT}/{_cached_settings.REDIS_DB}', "
                         f"SearchWorkers='{_cached_settings.SEARCH_WORKER_COUNT}', "
                         f"ProcessingTimeout='{_cached_settings.PROCESSING_TIMEOUT_MINUTES}m'")

        except Exception as e:
            logger.critical(f"CRITICAL ERROR initializing AppSettings: {e}.", exc_info=True)
            raise

    return _cached_settings

def get_app_settings() -> AppSettings:
    if _cached_settings is None:
        load_settings()
    if not isinstance(_cached_settings, AppSettings):
        logger.critical("Attempted to get settings, but initial loading failed critically.")
        raise RuntimeError("Application settings are not properly initialized due to a critical failure during startup.")
    return _cached_settings

def clear_cached_settings():
    global _cached_settings
    _cached_settings = None
    logger.info("Cached settings cleared.")

settings = load_settings()
