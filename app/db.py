from __future__ import annotations

from collections.abc import Iterator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings


def _enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite opens transactions lazily; take over BEGIN so SAVEPOINT works.
    @event.listens_for(engine, 'connect')
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()

    @event.listens_for(engine, 'begin')
    def _on_begin(conn):
        conn.exec_driver_sql('BEGIN')


def build_engine(url: str, *, echo: bool = False) -> Engine:
    if not url.startswith('sqlite'):
        return create_engine(url, echo=echo, pool_pre_ping=True)

    kwargs: dict = {'connect_args': {'check_same_thread': False}}
    if ':memory:' in url or url in {'sqlite://', 'sqlite+pysqlite://'}:
        kwargs['poolclass'] = StaticPool
    engine = create_engine(url, echo=echo, **kwargs)
    _enable_sqlite_savepoints(engine)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


engine = build_engine(settings.database_url_normalized, echo=settings.database_echo)
SessionLocal = build_session_factory(engine)


def get_db() -> Iterator[Session]:
    with SessionLocal() as db:
        yield db


def init_db(bind: Engine | None = None) -> None:
    from app.models import Base

    Base.metadata.create_all(bind or engine)
