from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from config import DB_NAME, ROOT_DATABASE_URL, DATABASE_URL


def _engine_kwargs(url) -> dict:
    # In-memory SQLite must share one connection across worker threads.
    if url.get_backend_name() == "sqlite":
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {"pool_pre_ping": True}


engine = create_engine(DATABASE_URL, echo=False, **_engine_kwargs(DATABASE_URL))
SessionLocal = sessionmaker(bind=engine)
Base = declarative_base()


def ensure_database() -> None:
    if DATABASE_URL.get_backend_name() != "mysql":
        return
    root_engine = create_engine(
        ROOT_DATABASE_URL,
        isolation_level="AUTOCOMMIT"
    )
    try:
        with root_engine.connect() as conn:
            conn.execute(text(f"CREATE DATABASE IF NOT EXISTS {DB_NAME}"))
    finally:
        root_engine.dispose()


def init_db() -> None:
    import models  # noqa: F401  registers the tables on Base.metadata

    ensure_database()
    Base.metadata.create_all(bind=engine)
