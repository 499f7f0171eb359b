import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash

from app.ims.constants import PERMISSIONS, ROLES
from app.ims.models import Base, Permission, Role, User
from scripts.init_db import seed_only
from scripts.start import parse_port


def test_parse_port():
    assert parse_port(None) == 8080
    assert parse_port(" 5000 ") == 5000
    with pytest.raises(ValueError):
        parse_port("70000")
    with pytest.raises(ValueError):
        parse_port("http")


def test_seed_only_is_idempotent(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'seed.db'}"
    engine = create_engine(url)
    Base.metadata.create_all(bind=engine)

    monkeypatch.setenv("ADMIN_EMAIL", "Boss@Example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "first-password")
    seed_only(database_url=url)
    monkeypatch.setenv("ADMIN_PASSWORD", "second-password")
    seed_only(database_url=url)

    with Session(engine) as s:
        assert s.query(Permission).count() == len(PERMISSIONS)
        assert s.query(Role).count() == len(ROLES)
        admin = s.query(User).filter(User.email == "boss@example.com").one()
        assert admin.role_keys == ["admin"]
        assert check_password_hash(admin.password_hash, "first-password")
    engine.dispose()
