import os
from dotenv import load_dotenv

load_dotenv()


def _float_list(raw: str):
    return [float(part) for part in raw.split(",") if part.strip()]


class Settings:
    SUPABASE_URL = os.getenv("SUPABASE_URL")
    SUPABASE_KEY = os.getenv("SUPABASE_KEY")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE_PATH = os.getenv("LOG_FILE_PATH")

    # Quiz play-through
    QUIZ_QUESTION_COUNT = int(os.getenv("QUIZ_QUESTION_COUNT", "10"))
    QUESTION_POOL_SIZE = int(os.getenv("QUESTION_POOL_SIZE", "50"))
    MAX_QUESTION_ID = int(os.getenv("MAX_QUESTION_ID", "52"))
    QUESTION_TIME_LIMIT_SECONDS = float(os.getenv("QUESTION_TIME_LIMIT_SECONDS", "10"))
    ANSWER_PAUSE_SECONDS = float(os.getenv("ANSWER_PAUSE_SECONDS", "2"))

    # Query cache windows, in seconds
    ROLE_CACHE_TTL_SECONDS = float(os.getenv("ROLE_CACHE_TTL_SECONDS", "300"))
    STATS_CACHE_TTL_SECONDS = float(os.getenv("STATS_CACHE_TTL_SECONDS", "300"))
    CATEGORY_CACHE_TTL_SECONDS = float(os.getenv("CATEGORY_CACHE_TTL_SECONDS", "600"))
    QUESTIONS_CACHE_TTL_SECONDS = float(os.getenv("QUESTIONS_CACHE_TTL_SECONDS", "120"))
    CACHE_GC_SECONDS = float(os.getenv("CACHE_GC_SECONDS", "600"))
    CACHE_MAX_ENTRIES = int(os.getenv("CACHE_MAX_ENTRIES", "1000"))
    CACHE_GC_INTERVAL_SECONDS = float(os.getenv("CACHE_GC_INTERVAL_SECONDS", "60"))

    RECORDER_RETRY_DELAYS = _float_list(os.getenv("RECORDER_RETRY_DELAYS", "0.5,1,2"))
    RECORDER_DRAIN_TIMEOUT_SECONDS = float(os.getenv("RECORDER_DRAIN_TIMEOUT_SECONDS", "5"))
    DEBOUNCE_MS = int(os.getenv("DEBOUNCE_MS", "500"))

    LOCAL_STORE_PATH = os.getenv("LOCAL_STORE_PATH", ".quiz_local.json")


settings = Settings()
