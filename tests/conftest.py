"""Общие фикстуры: SQLite в tmp_path, подменённый reloader, фабрики записей."""
import json
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import db.models  # noqa: F401
from db.base import Base
from db.models import Account, InboundDefinition
from services import reload as reload_module
from services.endpoint import EndpointDefaults
from services.exceptions import ReloadSignalError
from services.reload import ConfigReloader

DEFAULTS = EndpointDefaults(
    server_address="203.0.113.10",
    default_sni="www.example.com",
    grpc_sni="grpc.example.com",
    fingerprint="chrome",
)

INBOUND_FIELDS = {
    "display_name": "",
    "protocol": "vless",
    "listen_port": 443,
    "tls_type": "",
    "sni": "",
    "cert_path": "",
    "key_path": "",
    "transport": "",
    "service_name": "",
    "user_type": "",
    "flow": "",
    "multiplex": False,
    "enabled": True,
    "is_builtin": False,
    "sort_order": 0,
    "server_address": "",
    "reality_private_key": "",
    "reality_public_key": "",
    "reality_short_ids": [],
    "fingerprint": "",
}


class RecordingReloader(ConfigReloader):
    """Пишет настоящий файл, но вместо systemctl считает вызовы reload."""

    def __init__(self, config_path, fail_reload: bool = False, failures: int = 0, attempts: int = 1):
        super().__init__(config_path=str(config_path), reload_command=["true"], timeout=1,
                         attempts=attempts, backoff=0)
        self.fail_reload = fail_reload
        self.failures = failures  # сколько ближайших попыток упадут
        self.signals = 0
        self.reloads = 0

    def signal_reload(self) -> None:
        self.signals += 1
        if self.fail_reload or self.failures > 0:
            self.failures -= 1
            raise ReloadSignalError("reload exited with 1: unit sing-box.service not loaded")
        self.reloads += 1

    def read(self) -> dict:
        with open(self.config_path, encoding="utf-8") as f:
            return json.load(f)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def reloader(tmp_path, monkeypatch):
    recording = RecordingReloader(tmp_path / "config.json")
    monkeypatch.setattr(reload_module, "_reloader", recording)
    return recording


def make_inbound(**overrides) -> InboundDefinition:
    """Несохранённый инбаунд со всеми полями (дефолты колонок применяются только при flush)."""
    fields = dict(INBOUND_FIELDS)
    fields.setdefault("tag", f"in-{uuid4().hex[:6]}")
    fields.update(overrides)
    return InboundDefinition(**fields)


def make_reality(**overrides) -> InboundDefinition:
    fields = {
        "tag": "vless-in",
        "display_name": "VLESS Reality",
        "listen_port": 8444,
        "tls_type": "reality",
        "user_type": "legacy",
        "flow": "xtls-rprx-vision",
        "reality_private_key": "priv-key",
        "reality_public_key": "pub-key",
        "reality_short_ids": ["207fc82a9f9e741f"],
        "fingerprint": "random",
    }
    fields.update(overrides)
    return make_inbound(**fields)


def make_account(**overrides) -> Account:
    fields = {
        "uuid": str(uuid4()),
        "username": f"user_{uuid4().hex[:6]}",
        "telegram_id": 0,
        "status": "active",
        "traffic_limit": 0,
        "traffic_used": 0,
        "subscription_token": str(uuid4()),
    }
    fields.update(overrides)
    return Account(**fields)


def store(db, *records):
    db.add_all(records)
    db.commit()
    for record in records:
        db.refresh(record)
    return records[0] if len(records) == 1 else records
