"""
Сборка config.json для sing-box из аккаунтов и инбаундов.

Чистая функция: на вход записи, на выход dict. Каждый инбаунд сначала
сводится к InboundShape, дальше users / tls / transport берутся из таблиц
по варианту - без вложенных if по user_type/transport/tls_type.
"""
import json
from collections.abc import Iterable

import config
from services.endpoint import EndpointDefaults, InboundShape, default_endpoint, resolve_shape, resolve_sni
from services.exceptions import SynthesisError
from services.validator import combination_fields, validate_combination

VISION_FLOW = "xtls-rprx-vision"
REALITY_HANDSHAKE_PORT = 443


def _legacy_user(account) -> dict:
    return {"name": account.username, "uuid": account.uuid, "flow": VISION_FLOW}


def _new_user(account) -> dict:
    # flow не пишем совсем: даже пустой flow ломает не-TCP транспорты
    return {"name": account.username, "uuid": account.uuid}


def _hy2_user(account) -> dict:
    return {"name": account.username, "password": account.uuid}


USER_ENCODERS = {
    ("vless", "legacy"): _legacy_user,
    ("vless", "new"): _new_user,
    ("hysteria2", "hy2"): _hy2_user,
}


def _reality_tls(definition, sni: str) -> dict:
    if not definition.reality_private_key:
        raise SynthesisError(definition.tag, "reality private key is empty")
    return {
        "enabled": True,
        "server_name": sni,
        "reality": {
            "enabled": True,
            "handshake": {"server": sni, "server_port": REALITY_HANDSHAKE_PORT},
            "private_key": definition.reality_private_key,
            "short_id": list(definition.reality_short_ids or []),
            "max_time_difference": "1m",
        },
    }


def _certificate_tls(definition, sni: str) -> dict:
    if not definition.cert_path or not definition.key_path:
        raise SynthesisError(definition.tag, "certificate TLS requires cert_path and key_path")
    return {
        "enabled": True,
        "server_name": sni,
        "certificate_path": definition.cert_path,
        "key_path": definition.key_path,
    }


TLS_BUILDERS = {
    "reality": _reality_tls,
    "certificate": _certificate_tls,
}


def _http_transport(definition) -> dict:
    return {"type": "http"}


def _grpc_transport(definition) -> dict:
    return {"type": "grpc", "service_name": definition.service_name}


def _path_transport(kind: str, **extra):
    def build(definition) -> dict:
        transport = {"type": kind}
        if definition.service_name:
            transport["path"] = definition.service_name
        transport.update(extra)
        return transport
    return build


TRANSPORT_BUILDERS = {
    "http": _http_transport,
    "grpc": _grpc_transport,
    "httpupgrade": _path_transport("httpupgrade"),
    "ws": _path_transport("ws"),
    "xhttp": _path_transport("xhttp", mode="auto"),
}


def _lookup(table: dict, key, definition, what: str):
    try:
        return table[key]
    except KeyError:
        raise SynthesisError(definition.tag, f"unsupported {what} {key!r}") from None


def build_inbound(definition, accounts: list, defaults: EndpointDefaults) -> dict:
    """Один инбаунд sing-box. Бросает SynthesisError, если вариант не поддерживается."""
    violation = validate_combination(combination_fields(definition))
    if violation:
        raise SynthesisError(definition.tag, violation)

    shape: InboundShape = resolve_shape(definition)
    encode_user = _lookup(USER_ENCODERS, (shape.protocol, shape.users), definition, "user type")

    inbound = {
        "type": shape.protocol,
        "tag": definition.tag,
        "listen": "::",
        "listen_port": definition.listen_port,
        "users": [encode_user(account) for account in accounts],
    }
    if shape.tls:
        build_tls = _lookup(TLS_BUILDERS, shape.tls, definition, "tls type")
        inbound["tls"] = build_tls(definition, resolve_sni(definition, defaults))
    if shape.transport:
        build_transport = _lookup(TRANSPORT_BUILDERS, shape.transport, definition, "transport")
        inbound["transport"] = build_transport(definition)
    if definition.multiplex and shape.protocol == "vless":
        inbound["multiplex"] = {"enabled": True}
    return inbound


def emitted_definitions(definitions: Iterable) -> list:
    """Включённые инбаунды в порядке sort_order."""
    return sorted(
        (d for d in definitions if d.enabled),
        key=lambda d: (d.sort_order or 0, d.id or 0),
    )


def synthesize(
    accounts: Iterable,
    definitions: Iterable,
    defaults: EndpointDefaults | None = None,
) -> dict:
    """
    Полный документ конфигурации sing-box.

    В users попадают только аккаунты со status=active, в inbounds - только enabled.
    Блок experimental.v2ray_api.stats перечисляет теги и метки, чтобы демон
    вёл счётчики user>>>{name}>>>traffic>>>{uplink,downlink}.
    """
    defaults = defaults or default_endpoint()
    active = [a for a in accounts if a.status == "active"]
    enabled = emitted_definitions(definitions)

    inbounds = [build_inbound(definition, active, defaults) for definition in enabled]

    return {
        "log": {"level": config.SINGBOX_LOG_LEVEL, "timestamp": True},
        "inbounds": inbounds,
        "outbounds": [
            {"type": "direct", "tag": "direct"},
            {"type": "block", "tag": "block"},
        ],
        "experimental": {
            "v2ray_api": {
                "listen": config.STATS_API_ADDR,
                "stats": {
                    "enabled": True,
                    "inbounds": [definition.tag for definition in enabled],
                    "users": [account.username for account in active],
                },
            },
        },
    }


def render(document: dict) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False)
