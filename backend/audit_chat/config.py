import os
from pathlib import Path
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parents[2]  # repository root
env_path = BASE_DIR / ".env"
load_dotenv(dotenv_path=env_path)


def _bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./audit_chat.db")
    SQL_ECHO = _bool("SQL_ECHO", False)
    RUN_MIGRATIONS = _bool("RUN_MIGRATIONS", True)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()]

    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
    OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    OPENAI_ASSISTANT_ID_MARKETING = os.getenv("OPENAI_ASSISTANT_ID_MARKETING", "")
    OPENAI_ASSISTANT_ID_WEBSITE = os.getenv("OPENAI_ASSISTANT_ID_WEBSITE", "")

    # Thread rotation
    CONTEXT_TOKEN_CEILING = int(os.getenv("CONTEXT_TOKEN_CEILING", 32000))
    ROTATION_THRESHOLD_RATIO = float(os.getenv("ROTATION_THRESHOLD_RATIO", 0.78))
    CHARS_PER_TOKEN = int(os.getenv("CHARS_PER_TOKEN", 4))
    TOKEN_MONITOR_MESSAGE_LIMIT = int(os.getenv("TOKEN_MONITOR_MESSAGE_LIMIT", 100))
    ROTATION_WINDOW = int(os.getenv("ROTATION_WINDOW", 20))

    # Run polling + streaming
    RUN_POLL_INTERVAL_S = float(os.getenv("RUN_POLL_INTERVAL_S", 2.0))
    RUN_POLL_MAX_ATTEMPTS = int(os.getenv("RUN_POLL_MAX_ATTEMPTS", 60))
    PROGRESS_EVERY_N_POLLS = int(os.getenv("PROGRESS_EVERY_N_POLLS", 3))
    STREAM_CHUNK_CHARS = int(os.getenv("STREAM_CHUNK_CHARS", 48))
    STREAM_CHUNK_DELAY_S = float(os.getenv("STREAM_CHUNK_DELAY_S", 0.02))

    REPORT_CONTEXT_MAX_CHARS = int(os.getenv("REPORT_CONTEXT_MAX_CHARS", 12000))

    @property
    def ROTATION_TOKEN_THRESHOLD(self) -> int:
        return int(self.CONTEXT_TOKEN_CEILING * self.ROTATION_THRESHOLD_RATIO)

    def assistant_id_for(self, report_type: str) -> str:
        if report_type == "website":
            return self.OPENAI_ASSISTANT_ID_WEBSITE
        return self.OPENAI_ASSISTANT_ID_MARKETING

settings = Settings()
