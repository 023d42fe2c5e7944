"""Клиентские ссылки vless:// и hysteria2:// и подписка (base64-пакет ссылок)."""
import base64
from collections.abc import Iterable
from urllib.parse import quote, urlencode

import config
from services.endpoint import EndpointDefaults, default_endpoint, resolve_address, resolve_shape, resolve_sni
from services.singbox import VISION_FLOW, emitted_definitions

SECURITY = {"reality": "reality", "certificate": "tls", "": "none"}
PATH_TRANSPORTS = ("httpupgrade", "ws", "xhttp")


def _fragment(definition, account) -> str:
    name = definition.display_name or definition.tag
    return quote(f"{name}-{account.username}", safe="")


def _host(address: str) -> str:
    # IPv6 в URI - в квадратных скобках
    if ":" in address and not address.startswith("["):
        return f"[{address}]"
    return address


def _vless_params(definition, shape, sni: str, defaults: EndpointDefaults) -> list[tuple[str, str]]:
    params = [("encryption", "none"), ("security", SECURITY[shape.tls])]
    if shape.tls:
        params.append(("sni", sni))
        params.append(("fp", definition.fingerprint or defaults.fingerprint))
    if shape.tls == "reality":
        params.append(("pbk", definition.reality_public_key))
        short_ids = definition.reality_short_ids or []
        if short_ids:
            params.append(("sid", short_ids[0]))

    params.append(("type", shape.transport or "tcp"))
    if shape.users == "legacy":
        params.append(("flow", VISION_FLOW))
    if shape.transport == "grpc":
        params.append(("serviceName", definition.service_name))
    elif shape.transport in PATH_TRANSPORTS and definition.service_name:
        params.append(("path", definition.service_name))
    if shape.transport == "xhttp":
        params.append(("mode", "auto"))
    return params


def build_link(definition, account, server_address: str | None = None, defaults: EndpointDefaults | None = None) -> str:
    """
    Ссылка для одного инбаунда и одного аккаунта.

    Адрес: server_address инбаунда, иначе переданный адрес сервера (или SERVER_ADDRESS).
    Порт и SNI - те же, что synthesize() пишет в конфиг.
    """
    defaults = defaults or default_endpoint()
    shape = resolve_shape(definition)
    address = resolve_address(definition, server_address or defaults.server_address)
    sni = resolve_sni(definition, defaults)
    netloc = f"{account.uuid}@{_host(address)}:{definition.listen_port}"

    if shape.protocol == "hysteria2":
        query = urlencode([("sni", sni)])
        return f"hysteria2://{netloc}?{query}#{_fragment(definition, account)}"

    query = urlencode(_vless_params(definition, shape, sni, defaults))
    return f"vless://{netloc}?{query}#{_fragment(definition, account)}"


def build_links(definitions: Iterable, account, server_address: str | None = None,
                defaults: EndpointDefaults | None = None) -> list[str]:
    """Ссылки по всем включённым инбаундам в порядке sort_order."""
    return [build_link(d, account, server_address, defaults) for d in emitted_definitions(definitions)]


def subscription_headers(account) -> dict[str, str]:
    return {
        "Profile-Update-Interval": str(config.SUBSCRIPTION_UPDATE_INTERVAL),
        "Subscription-Userinfo": f"upload=0; download={account.traffic_used}; total={account.traffic_limit}",
    }


def build_subscription(definitions: Iterable, account, server_address: str | None = None,
                       defaults: EndpointDefaults | None = None) -> tuple[str, dict[str, str]]:
    """Тело подписки (base64 от ссылок через \\n) и заголовки с расходом трафика."""
    links = build_links(definitions, account, server_address, defaults)
    body = base64.b64encode("\n".join(links).encode()).decode()
    return body, subscription_headers(account)
