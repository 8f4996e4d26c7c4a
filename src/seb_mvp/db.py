# src/seb_mvp/db.py
from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .settings import settings

logger = logging.getLogger(__name__)


# psycopg3 uses 'postgresql+psycopg' instead of 'postgresql+psycopg2'
def get_sqlalchemy_url() -> str:
    url = settings.sqlalchemy_url
    if 'postgresql+psycopg2' in url:
        url = url.replace('postgresql+psycopg2', 'postgresql+psycopg')
    elif url.startswith('postgresql://'):
        url = url.replace('postgresql://', 'postgresql+psycopg://')
    return url


def _connect_args(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        # FastAPI runs sync handlers in a threadpool
        return {"check_same_thread": False}
    return {
        "options": "-c statement_timeout=30000",  # 30 second timeout
        # Prevent duplicate prepared statement errors across pooled connections
        "prepare_threshold": 0,
    }


_url = get_sqlalchemy_url()

engine = create_engine(
    _url,
    pool_pre_ping=True,
    connect_args=_connect_args(_url),
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def init_db() -> None:
    # Safe if tables already exist
    from .models import Base

    Base.metadata.create_all(bind=engine)
    logger.info("Key-value storage ready at %s", engine.url.render_as_string(hide_password=True))
