"""Проверка домена-маскировки для Reality: сайт должен отвечать по TLS 1.3 и поддерживать h2."""
import logging
import socket
import ssl

import config

logger = logging.getLogger(__name__)

HTTPS_PORT = 443


def validate_reality_sni(domain: str, port: int = HTTPS_PORT, timeout: float = config.SNI_CHECK_TIMEOUT) -> bool:
    domain = (domain or "").strip()
    if not domain:
        return False
    ctx = ssl.create_default_context()
    ctx.minimum_version = ssl.TLSVersion.TLSv1_3
    ctx.set_alpn_protocols(["h2", "http/1.1"])
    try:
        with socket.create_connection((domain, port), timeout=timeout) as sock:
            with ctx.wrap_socket(sock, server_hostname=domain) as tls:
                version = tls.version()
                alpn = tls.selected_alpn_protocol()
    except OSError as e:
        # ssl.SSLError и socket.timeout - подклассы OSError
        logger.info("SNI check %s:%s failed: %s", domain, port, e)
        return False
    logger.info("SNI check %s:%s: %s alpn=%s", domain, port, version, alpn)
    return version == "TLSv1.3" and alpn == "h2"
