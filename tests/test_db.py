from sqlalchemy import text

from app.ims.db import engine_options, make_engine


def test_engine_options_pool_only_for_postgres():
    pg = engine_options("postgresql+psycopg2://u:p@db/ims")
    assert pg["pool_size"] == 5
    assert pg["pool_pre_ping"] is True
    assert "pool_size" not in engine_options("sqlite:///ims.db")


def test_sqlite_engine_enforces_foreign_keys(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path/'fk.db'}")
    with engine.connect() as conn:
        assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
    engine.dispose()
