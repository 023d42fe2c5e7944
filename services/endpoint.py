"""
Общие правила для конфига sing-box и клиентских ссылок.
Адрес, порт и SNI в ссылке должны совпадать с тем, что слушает демон, поэтому
и синтез конфига, и ссылки берут их только отсюда.
"""
from typing import NamedTuple

import config
from services.exceptions import SynthesisError


class EndpointDefaults(NamedTuple):
    server_address: str
    default_sni: str
    grpc_sni: str
    fingerprint: str


class InboundShape(NamedTuple):
    """Конкретный вариант инбаунда: по нему выбираются шаблоны users / tls / transport."""
    protocol: str  # vless | hysteria2
    users: str  # legacy | new | hy2
    tls: str  # "" | reality | certificate
    transport: str  # "" | http | grpc | httpupgrade | ws | xhttp


def default_endpoint() -> EndpointDefaults:
    return EndpointDefaults(
        server_address=config.SERVER_ADDRESS,
        default_sni=config.DEFAULT_SNI,
        grpc_sni=config.GRPC_SNI,
        fingerprint=config.DEFAULT_FINGERPRINT,
    )


def resolve_shape(definition) -> InboundShape:
    protocol = definition.protocol or ""
    user_type = definition.user_type or ""
    tls = definition.tls_type or ""
    transport = definition.transport or ""

    if protocol == "hysteria2":
        # у hysteria2 без TLS не бывает: пустой tls_type = certificate
        return InboundShape("hysteria2", user_type or "hy2", tls or "certificate", transport)
    if protocol == "vless":
        if not user_type:
            user_type = "legacy" if definition.flow else "new"
        return InboundShape("vless", user_type, tls, transport)
    raise SynthesisError(definition.tag, f"unsupported protocol '{protocol}'")


def resolve_sni(definition, defaults: EndpointDefaults) -> str:
    """SNI инбаунда; пустой -> SNI по умолчанию (для gRPC свой). Без TLS - пустая строка."""
    shape = resolve_shape(definition)
    if not shape.tls:
        return ""
    if definition.sni:
        return definition.sni
    if shape.transport == "grpc":
        return defaults.grpc_sni
    return defaults.default_sni


def resolve_address(definition, server_address: str) -> str:
    """Адрес для ссылок: override инбаунда, иначе адрес сервера."""
    return definition.server_address or server_address
