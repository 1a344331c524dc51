import sqlite3

from sqlalchemy import String, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.sql.functions import FunctionElement

from app.core.config import settings


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        # busy timeout keeps writers from blocking forever on a locked file
        return {"check_same_thread": False, "timeout": settings.DB_TIMEOUT_SECONDS}
    return {}


class casefold(FunctionElement):
    """Unicode-aware case folding; SQLite's own lower() only folds ASCII."""

    type = String()
    name = "casefold"
    inherit_cache = True


@compiles(casefold)
def _compile_casefold(element, compiler, **kw):
    return "lower(%s)" % compiler.process(element.clauses, **kw)


@compiles(casefold, "sqlite")
def _compile_casefold_sqlite(element, compiler, **kw):
    return "py_casefold(%s)" % compiler.process(element.clauses, **kw)


def _py_casefold(value):
    return value.casefold() if isinstance(value, str) else value


@event.listens_for(Engine, "connect")
def _register_sqlite_functions(dbapi_connection, connection_record):
    if isinstance(dbapi_connection, sqlite3.Connection):
        dbapi_connection.create_function("py_casefold", 1, _py_casefold, deterministic=True)


engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args(settings.DATABASE_URL),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


# FastAPI dependency: one Session per request
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
