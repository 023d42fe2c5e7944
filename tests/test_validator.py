import pytest

from services.exceptions import InboundValidationError
from services.validator import check_inbound, normalize_inbound, validate_combination, validate_inbound


def test_hysteria2_rejects_transport():
    violation = validate_combination({"protocol": "hysteria2", "tls_type": "certificate", "transport": "grpc"})
    assert violation == "Hysteria2 does not support transport"


def test_hysteria2_rejects_reality():
    violation = validate_combination({"protocol": "hysteria2", "tls_type": "reality"})
    assert violation == "Hysteria2 requires tls_type 'certificate'"


def test_hysteria2_rejects_vless_user_type_and_flow():
    assert validate_combination({"protocol": "hysteria2", "user_type": "new"}) == "Hysteria2 requires user_type 'hy2'"
    assert validate_combination({"protocol": "hysteria2", "flow": "xtls-rprx-vision"}) == "Hysteria2 does not support flow"


def test_flow_requires_tcp():
    violation = validate_combination({"protocol": "vless", "flow": "xtls-rprx-vision", "transport": "grpc"})
    assert violation == "Flow (XTLS-Vision) only works with TCP (empty transport)"


def test_flow_requires_legacy_users():
    violation = validate_combination({"protocol": "vless", "flow": "xtls-rprx-vision", "user_type": "new"})
    assert violation == "Flow (XTLS-Vision) requires user_type 'legacy'"


def test_transport_rejects_legacy_users():
    violation = validate_combination({"protocol": "vless", "transport": "ws", "user_type": "legacy"})
    assert violation == "Transport 'ws' requires user_type 'new' (legacy adds flow which is incompatible)"


def test_first_violation_wins():
    # нарушает и hysteria2-правила, и правило flow+transport
    data = {
        "protocol": "hysteria2",
        "tls_type": "reality",
        "transport": "grpc",
        "flow": "xtls-rprx-vision",
        "user_type": "legacy",
    }
    assert validate_combination(data) == "Hysteria2 requires tls_type 'certificate'"

    data["tls_type"] = "certificate"
    assert validate_combination(data) == "Hysteria2 requires user_type 'hy2'"


@pytest.mark.parametrize(
    "data",
    [
        {"protocol": "vless", "tls_type": "reality", "user_type": "legacy", "flow": "xtls-rprx-vision"},
        {"protocol": "vless", "tls_type": "reality", "transport": "http", "user_type": "new"},
        {"protocol": "vless", "tls_type": "reality", "transport": "grpc", "user_type": ""},
        {"protocol": "hysteria2", "tls_type": "certificate", "user_type": "hy2"},
        {"protocol": "hysteria2"},
    ],
)
def test_valid_combinations(data):
    assert validate_combination(data) is None


def test_invalid_protocol():
    assert validate_inbound({"protocol": "trojan"}) == "Protocol must be 'vless' or 'hysteria2'"
    assert validate_inbound({}) == "Protocol must be 'vless' or 'hysteria2'"


def test_unknown_values_rejected():
    assert validate_inbound({"protocol": "vless", "transport": "quic", "user_type": "new"}) == "Unsupported transport 'quic'"
    assert validate_inbound({"protocol": "vless", "tls_type": "xtls"}) == "Unsupported tls_type 'xtls'"


def test_port_range():
    assert validate_inbound({"protocol": "vless", "listen_port": 70000}) == "listen_port must be between 0 and 65535"
    assert validate_inbound({"protocol": "vless", "listen_port": 443}) is None


def test_normalize_trims_strings_and_short_ids():
    data = normalize_inbound({
        "tag": "  vless-ws ",
        "transport": " ws",
        "listen_port": 443,
        "reality_short_ids": [" ab12 ", "", "   "],
    })
    assert data["tag"] == "vless-ws"
    assert data["transport"] == "ws"
    assert data["listen_port"] == 443
    assert data["reality_short_ids"] == ["ab12"]


def test_whitespace_only_values_count_as_empty():
    data = normalize_inbound({"protocol": "vless", "transport": "  ", "flow": "xtls-rprx-vision", "user_type": "legacy"})
    assert validate_inbound(data) is None


def test_check_inbound_raises_with_message():
    with pytest.raises(InboundValidationError) as exc:
        check_inbound({"protocol": "hysteria2", "tls_type": "certificate", "transport": "ws"})
    assert exc.value.message == "Hysteria2 does not support transport"
