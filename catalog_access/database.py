# catalog_access/database.py
from contextlib import contextmanager
from typing import Iterator

from fastapi import FastAPI, Request
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from catalog_access.repositories.storage import SqlStorage, Storage

# Import models so SQLModel metadata is populated before create_all()
from catalog_access.models import access_token as _access_token_models  # noqa: F401
from catalog_access.models import device_session as _device_session_models  # noqa: F401
from catalog_access.models import otp as _otp_models  # noqa: F401
from catalog_access.models import server_session as _server_session_models  # noqa: F401
from catalog_access.models import user as _user_models  # noqa: F401


def build_engine(database_url: str) -> Engine:
    """
    Create the SQLAlchemy engine for ``database_url``.

    Postgres (Supabase pooler and similar):
      - sslmode=require   : enforce SSL when running in the cloud
      - pool_size=1       : keep only 1 connection to the pooler
      - max_overflow=0    : do not open extra connections beyond the pool
      - pool_pre_ping=True: validate connections before using them

    SQLite (local development):
      - check_same_thread=False so FastAPI's threadpool can share the file
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
        )

    # Append sslmode=require if it is not already present
    if "sslmode=" not in database_url:
        separator = "&" if "?" in database_url else "?"
        database_url = f"{database_url}{separator}sslmode=require"

    return create_engine(
        database_url,
        echo=False,  # set to True if you want to debug SQL queries
        pool_pre_ping=True,
        pool_size=1,
        max_overflow=0,
    )


def create_db_and_tables(engine: Engine) -> None:
    """
    Create all tables defined in SQLModel metadata if they do not exist.

    This is called once on application startup.
    """
    SQLModel.metadata.create_all(engine)


@contextmanager
def storage_scope(app: FastAPI) -> Iterator[Storage]:
    """
    Yield the Storage configured on ``app``.

    Apps created with a shared Storage (MemoryStorage) reuse it; SQL-backed
    apps get a fresh Session per scope.
    """
    shared = getattr(app.state, "storage", None)
    if shared is not None:
        yield shared
        return

    with Session(app.state.engine) as session:
        yield SqlStorage(session)


def get_storage(request: Request) -> Iterator[Storage]:
    """
    FastAPI dependency that yields a Storage for the current request.

    Usage:

        from fastapi import Depends

        @router.get("/example")
        def example_endpoint(storage: Storage = Depends(get_storage)):
            ...
    """
    with storage_scope(request.app) as storage:
        yield storage
