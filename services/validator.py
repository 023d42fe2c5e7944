"""Проверка комбинаций полей инбаунда до сохранения в БД."""
from collections.abc import Mapping

from services.exceptions import InboundValidationError

PROTOCOLS = ("vless", "hysteria2")
TLS_TYPES = ("", "reality", "certificate")
TRANSPORTS = ("", "http", "grpc", "httpupgrade", "ws", "xhttp")
USER_TYPES = ("", "legacy", "new", "hy2")
FLOWS = ("", "xtls-rprx-vision")

STRING_FIELDS = (
    "tag",
    "display_name",
    "protocol",
    "tls_type",
    "sni",
    "cert_path",
    "key_path",
    "transport",
    "service_name",
    "user_type",
    "flow",
    "server_address",
    "reality_private_key",
    "reality_public_key",
    "fingerprint",
)


def normalize_inbound(data: Mapping) -> dict:
    """Копия данных с обрезанными пробелами во всех строковых полях (и в short_ids)."""
    result = dict(data)
    for field in STRING_FIELDS:
        value = result.get(field)
        if isinstance(value, str):
            result[field] = value.strip()
    short_ids = result.get("reality_short_ids")
    if short_ids is not None:
        result["reality_short_ids"] = [s.strip() for s in short_ids if s and s.strip()]
    return result


def combination_fields(definition) -> dict:
    """Поля записи (ORM-объекта), участвующие в проверке комбинаций."""
    return {field: getattr(definition, field, "") for field in ("protocol", "tls_type", "transport", "user_type", "flow")}


def validate_combination(data: Mapping) -> str | None:
    """
    Первое нарушение в фиксированном порядке или None.
    Порядок важен: запись может нарушать несколько правил, наружу отдаём первое.
    """
    protocol = data.get("protocol") or ""
    tls_type = data.get("tls_type") or ""
    transport = data.get("transport") or ""
    user_type = data.get("user_type") or ""
    flow = data.get("flow") or ""

    # hysteria2: только certificate, user_type=hy2, без transport и flow
    if protocol == "hysteria2":
        if tls_type not in ("", "certificate"):
            return "Hysteria2 requires tls_type 'certificate'"
        if user_type not in ("", "hy2"):
            return "Hysteria2 requires user_type 'hy2'"
        if transport:
            return "Hysteria2 does not support transport"
        if flow:
            return "Hysteria2 does not support flow"

    # flow (XTLS-Vision) только поверх TCP и только с legacy
    if flow:
        if transport:
            return "Flow (XTLS-Vision) only works with TCP (empty transport)"
        if user_type not in ("", "legacy"):
            return "Flow (XTLS-Vision) requires user_type 'legacy'"

    if transport and user_type == "legacy":
        return f"Transport '{transport}' requires user_type 'new' (legacy adds flow which is incompatible)"

    return None


def validate_inbound(data: Mapping) -> str | None:
    """Полная проверка кандидата: протокол, комбинации, допустимые значения."""
    protocol = data.get("protocol") or ""
    if protocol not in PROTOCOLS:
        return "Protocol must be 'vless' or 'hysteria2'"

    violation = validate_combination(data)
    if violation:
        return violation

    for field, allowed in (
        ("tls_type", TLS_TYPES),
        ("transport", TRANSPORTS),
        ("user_type", USER_TYPES),
        ("flow", FLOWS),
    ):
        value = data.get(field) or ""
        if value not in allowed:
            return f"Unsupported {field} '{value}'"

    port = data.get("listen_port") or 0
    if not isinstance(port, int) or not 0 <= port <= 65535:
        return "listen_port must be between 0 and 65535"
    return None


def check_inbound(data: Mapping) -> None:
    violation = validate_inbound(data)
    if violation:
        raise InboundValidationError(violation)


def inbound_rules() -> dict:
    """Справочник транспортов и протоколов для UI: что с чем совместимо."""
    return {
        "transports": [
            {
                "value": "",
                "label": "TCP",
                "description": "Прямое подключение. Поддерживает XTLS-Vision (flow).",
                "user_type": "legacy",
                "flow": "xtls-rprx-vision",
            },
            {
                "value": "http",
                "label": "HTTP/2",
                "description": "Мультиплексирование через HTTP/2.",
                "user_type": "new",
                "flow": "",
            },
            {
                "value": "httpupgrade",
                "label": "HTTPUpgrade (HTTP/1.1)",
                "description": "HTTP/1.1 Upgrade. Поле service_name = path.",
                "user_type": "new",
                "flow": "",
            },
            {
                "value": "grpc",
                "label": "gRPC",
                "description": "Маскировка под gRPC API. Поле service_name = имя сервиса.",
                "user_type": "new",
                "flow": "",
            },
            {
                "value": "ws",
                "label": "WebSocket",
                "description": "HTTP/1.1 WebSocket. Поле service_name = path.",
                "user_type": "new",
                "flow": "",
            },
            {
                "value": "xhttp",
                "label": "XHTTP",
                "description": "Режим auto. Поле service_name = path.",
                "user_type": "new",
                "flow": "",
            },
        ],
        "protocols": [
            {"value": "vless", "label": "VLESS", "tls_types": ["reality", "certificate"]},
            {
                "value": "hysteria2",
                "label": "Hysteria2",
                "tls_types": ["certificate"],
                "forced": {"user_type": "hy2", "transport": "", "flow": ""},
            },
        ],
    }
