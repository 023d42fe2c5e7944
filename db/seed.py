"""Встроенные инбаунды: создаются один раз, когда таблица пустая."""
import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config import HY2_CERT_PATH, HY2_KEY_PATH, REALITY_PRIVATE_KEY, REALITY_PUBLIC_KEY, REALITY_SHORT_IDS
from db.models import InboundDefinition

logger = logging.getLogger(__name__)


def builtin_inbounds() -> list[InboundDefinition]:
    reality = {
        "tls_type": "reality",
        "reality_private_key": REALITY_PRIVATE_KEY,
        "reality_public_key": REALITY_PUBLIC_KEY,
        "reality_short_ids": list(REALITY_SHORT_IDS),
        "fingerprint": "random",
    }
    return [
        InboundDefinition(
            tag="vless-in",
            display_name="VLESS Reality (TCP)",
            protocol="vless",
            listen_port=8444,
            sni="rbc.ru",
            user_type="legacy",
            flow="xtls-rprx-vision",
            is_builtin=True,
            sort_order=0,
            **reality,
        ),
        InboundDefinition(
            tag="vless-in-h2",
            display_name="VLESS Reality (HTTP/2)",
            protocol="vless",
            listen_port=2053,
            sni="api.yandex.ru",
            transport="http",
            user_type="new",
            multiplex=True,
            is_builtin=True,
            sort_order=1,
            **reality,
        ),
        InboundDefinition(
            tag="hy2-in",
            display_name="Hysteria2",
            protocol="hysteria2",
            listen_port=2055,
            tls_type="certificate",
            cert_path=HY2_CERT_PATH,
            key_path=HY2_KEY_PATH,
            user_type="hy2",
            is_builtin=True,
            sort_order=2,
        ),
        InboundDefinition(
            tag="vless-in-grpc",
            display_name="VLESS Reality (gRPC)",
            protocol="vless",
            listen_port=2054,
            sni="tradingview.com",
            transport="grpc",
            service_name="grpc-vpn",
            user_type="new",
            is_builtin=True,
            sort_order=3,
            **reality,
        ),
    ]


def seed_builtin_inbounds(db: Session) -> int:
    """Создаёт встроенные инбаунды, если ни одного инбаунда ещё нет. Возвращает число созданных."""
    count = db.scalar(select(func.count()).select_from(InboundDefinition))
    if count:
        return 0
    builtins = builtin_inbounds()
    db.add_all(builtins)
    db.commit()
    if not REALITY_PRIVATE_KEY:
        logger.warning("Seed: REALITY_PRIVATE_KEY is empty, Reality inbounds will fail synthesis until keys are set")
    logger.info("Seed: created %s builtin inbounds", len(builtins))
    return len(builtins)
