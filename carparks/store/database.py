"""Engine and session construction for the backing store."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from carparks.common.fs import ensure_dir
from carparks.geo.distance import haversine_m
from carparks.store.tables import Base

DEFAULT_BUSY_TIMEOUT_SECONDS = 5.0


def _sql_haversine_m(lat1, lon1, lat2, lon2):
    if lat1 is None or lon1 is None or lat2 is None or lon2 is None:
        return None
    return haversine_m(lat1, lon1, lat2, lon2)


def _register_sqlite_functions(dbapi_connection, _connection_record) -> None:
    dbapi_connection.create_function("haversine_m", 4, _sql_haversine_m, deterministic=True)


def create_store_engine(database_config: dict) -> Engine:
    url = make_url(database_config["url"])
    busy_timeout = float(database_config.get("busy_timeout_seconds", DEFAULT_BUSY_TIMEOUT_SECONDS))
    kwargs: dict = {"echo": bool(database_config.get("echo", False))}

    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"timeout": busy_timeout, "check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            ensure_dir(Path(url.database).expanduser().resolve().parent)
    else:
        kwargs["pool_timeout"] = busy_timeout
        kwargs["pool_pre_ping"] = True

    engine = create_engine(url, **kwargs)
    if url.get_backend_name() == "sqlite":
        event.listen(engine, "connect", _register_sqlite_functions)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)
