# database/connection.py
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from medtrack import config


def build_database_url():
    """DB_URL with DB_USER / DB_PASSWORD applied on top when they are set."""
    url = make_url(config.DB_URL)
    if config.DB_USER:
        url = url.set(username=config.DB_USER)
    if config.DB_PASSWORD:
        url = url.set(password=config.DB_PASSWORD)
    return url


DATABASE_URL = build_database_url()

engine_options = {"echo": config.DB_ECHO}
if DATABASE_URL.get_backend_name() == "sqlite":
    engine_options["connect_args"] = {"check_same_thread": False}
    if DATABASE_URL.database in (None, "", ":memory:"):
        # one shared connection, otherwise every session sees an empty database
        engine_options["poolclass"] = StaticPool
else:
    engine_options["pool_pre_ping"] = True

engine = create_engine(DATABASE_URL, **engine_options)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
