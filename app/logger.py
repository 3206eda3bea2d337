import logging

from app.config import settings

handlers = [logging.StreamHandler()]
if settings.LOG_FILE_PATH:
    handlers.append(logging.FileHandler(settings.LOG_FILE_PATH, mode="a", encoding="utf-8"))

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    handlers=handlers,
)

# Shared logger for the quiz service
quiz_logger = logging.getLogger("QUIZ_SERVICE")
