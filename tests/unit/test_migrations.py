from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError

from userbase.db import models  # noqa: F401
from userbase.db.base import Base

ROOT = Path(__file__).resolve().parents[2]


@pytest.fixture
def alembic_config(tmp_path):
    config = Config(str(ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{tmp_path / 'userbase.db'}")
    return config


@pytest.fixture
def engine(alembic_config):
    engine = create_engine(alembic_config.get_main_option("sqlalchemy.url"))
    yield engine
    engine.dispose()


def insert_user(connection, user_id):
    connection.execute(
        text("INSERT INTO userbase_users (id, status, onboarding_step) VALUES (:id, 'active', 0)"),
        {"id": user_id},
    )


def insert_identity(connection, identity_id, user_id, identity_type, column, value):
    connection.execute(
        text(
            f"INSERT INTO userbase_identities (id, user_id, type, {column}, is_primary) "
            "VALUES (:id, :user_id, :type, :value, 0)"
        ),
        {"id": identity_id, "user_id": user_id, "type": identity_type, "value": value},
    )


def test_upgrade_creates_every_model_table(alembic_config, engine):
    command.upgrade(alembic_config, "head")

    tables = set(inspect(engine).get_table_names()) - {"alembic_version"}
    assert tables == set(Base.metadata.tables)

    for table in Base.metadata.sorted_tables:
        migrated = {column["name"] for column in inspect(engine).get_columns(table.name)}
        assert migrated == {column.name for column in table.columns}, table.name


def test_identifiers_are_unique_per_type(alembic_config, engine):
    command.upgrade(alembic_config, "head")
    address = "0x52908400098527886e0f7030069857d2e4169ee7"

    with engine.begin() as connection:
        insert_user(connection, "u1")
        insert_user(connection, "u2")
        insert_identity(connection, "i1", "u1", "evm", "address", address)
        # The same value under another type's column does not collide
        insert_identity(connection, "i2", "u2", "hive", "handle", "alice")
        insert_identity(connection, "i3", "u2", "farcaster", "handle", "alice")

    with pytest.raises(IntegrityError):
        with engine.begin() as connection:
            insert_identity(connection, "i4", "u2", "evm", "address", address)


def test_downgrade_removes_tables(alembic_config, engine):
    command.upgrade(alembic_config, "head")
    command.downgrade(alembic_config, "base")

    tables = set(inspect(engine).get_table_names()) - {"alembic_version"}
    assert tables == set()
