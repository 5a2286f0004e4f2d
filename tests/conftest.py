from __future__ import annotations

import os
from collections.abc import Iterator
from typing import Any, Final

import pytest
import sqlalchemy as sa

from sqla_entities import (
    Database,
    Settings,
    close_database,
    entities_cache_clear,
    init_database,
    init_settings,
)
from sqla_entities.config import reset_settings

from .models import SCHEMA, SEED, TABLES


PRIMARY_KEYS: Final[dict[str, str]] = {
    "sqlite": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "mysql": "INT PRIMARY KEY AUTO_INCREMENT",
}


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["sqlite", "mysql"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def db_config(db_backend: str) -> Iterator[str]:
    match db_backend:
        case "mysql":
            from testcontainers.mysql import MySqlContainer

            my = MySqlContainer(image="mysql:8.0")
            if os.name == "nt":
                my.get_container_host_ip = lambda: "127.0.0.1"
            with my:
                host = my.get_container_host_ip()
                port = my.get_exposed_port(my.port)
                yield f"mysql+pymysql://{my.username}:{my.password}@{host}:{port}/{my.dbname}"

        case "sqlite":
            yield "sqlite://"


def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
def engine(db_config: str, db_backend: str) -> Iterator[sa.Engine]:
    if db_backend == "sqlite":
        engine = sa.create_engine(db_config, poolclass=sa.pool.StaticPool)
        sa.event.listen(engine, "connect", _enable_foreign_keys)
    else:
        engine = sa.create_engine(db_config)

    yield engine
    engine.dispose()


@pytest.fixture
def settings(db_config: str) -> Iterator[Settings]:
    yield init_settings(Settings(url=db_config))
    reset_settings()


@pytest.fixture
def database(engine: sa.Engine, settings: Settings, db_backend: str) -> Iterator[Database]:
    db = init_database(settings, engine=engine)
    if db_backend == "mysql":
        db.execute("SET FOREIGN_KEY_CHECKS=0")
    for statement in SCHEMA:
        db.execute(statement.format(pk=PRIMARY_KEYS[db_backend]))
    if db_backend == "mysql":
        db.execute("SET FOREIGN_KEY_CHECKS=1")

    yield db

    if db.active_transaction is not None:
        db.active_transaction.rollback()
    # an in-memory sqlite database disappears with its engine
    if db_backend == "mysql":
        db.execute("SET FOREIGN_KEY_CHECKS=0")
        for table in TABLES:
            db.execute(f"DROP TABLE {table}")
    close_database()


@pytest.fixture
def seed_data(database: Database) -> Database:
    for statement in SEED:
        database.execute(statement)

    return database


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    entities_cache_clear()
