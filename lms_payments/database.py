from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from lms_payments.config import Settings

Base = declarative_base()


def build_engine(settings: Settings):
    return create_engine(
        settings.database_url,
        connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
    )


def build_session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
