"""
Database connection helper
"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .models import Base

logger = logging.getLogger(__name__)

DEFAULT_DB_URL = 'sqlite:///gaze_system.db'


def get_db_connection(url: str = DEFAULT_DB_URL, create_tables: bool = True):
    """
    Open an engine and a session.

    Args:
        url: SQLAlchemy database URL
        create_tables: Create any missing tables before returning

    Returns:
        (engine, session)
    """
    engine = create_engine(url)
    if create_tables:
        Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine)()
    logger.info(f"✓ Connected to {engine.url.render_as_string(hide_password=True)}")
    return engine, session
