from loguru import logger

from .base import Base
from .session import engine
from . import models  # noqa: F401  registers tables on Base.metadata


def init_db(bind=None):
    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    logger.info(f"Database tables ensured on {bind.url}")
