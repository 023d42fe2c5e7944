import os
import shlex

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./vpn.db")
API_URL = os.getenv("API_URL", "http://localhost:8085")
LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()

# Админский API: пустой токен = API выключен (503)
ADMIN_TOKEN = (os.getenv("ADMIN_TOKEN") or "").strip()

# sing-box: куда пишем конфиг и как его перечитать
SINGBOX_CONFIG_PATH = (os.getenv("SINGBOX_CONFIG_PATH") or "").strip() or "/etc/sing-box/config.json"
SINGBOX_RELOAD_COMMAND = shlex.split((os.getenv("SINGBOX_RELOAD_COMMAND") or "").strip() or "systemctl reload sing-box")
SINGBOX_RELOAD_TIMEOUT = float(os.getenv("SINGBOX_RELOAD_TIMEOUT") or 10)
SINGBOX_RELOAD_ATTEMPTS = max(1, int(os.getenv("SINGBOX_RELOAD_ATTEMPTS") or 3))
SINGBOX_RELOAD_BACKOFF = float(os.getenv("SINGBOX_RELOAD_BACKOFF") or 1)  # секунды, растёт линейно с попыткой
SINGBOX_LOG_LEVEL = (os.getenv("SINGBOX_LOG_LEVEL") or "").strip() or "info"

# Stats API демона (v2ray_api в sing-box): и listen в конфиге, и адрес клиента
STATS_API_ADDR = (os.getenv("STATS_API_ADDR") or "").strip() or "127.0.0.1:10085"
STATS_TIMEOUT = float(os.getenv("STATS_TIMEOUT") or 5)
METER_INTERVAL = int(os.getenv("METER_INTERVAL") or 10)  # секунды

# Адрес сервера для ссылок. Раньше был зашит IP; теперь явный дефолт + warning при старте
SERVER_ADDRESS_FROM_ENV = bool((os.getenv("SERVER_ADDRESS") or "").strip())
SERVER_ADDRESS = (os.getenv("SERVER_ADDRESS") or "").strip() or "127.0.0.1"

DEFAULT_SNI = (os.getenv("DEFAULT_SNI") or "").strip() or "www.apple.com"
GRPC_SNI = (os.getenv("GRPC_SNI") or "").strip() or DEFAULT_SNI
DEFAULT_FINGERPRINT = (os.getenv("DEFAULT_FINGERPRINT") or "").strip() or "chrome"
SNI_CHECK_TIMEOUT = float(os.getenv("SNI_CHECK_TIMEOUT") or 5)

# Reality-ключи для встроенных инбаундов (seed при первом запуске)
REALITY_PRIVATE_KEY = (os.getenv("REALITY_PRIVATE_KEY") or "").strip()
REALITY_PUBLIC_KEY = (os.getenv("REALITY_PUBLIC_KEY") or "").strip()
REALITY_SHORT_IDS = [s.strip() for s in (os.getenv("REALITY_SHORT_IDS") or "").split(",") if s.strip()]
HY2_CERT_PATH = (os.getenv("HY2_CERT_PATH") or "").strip() or "/etc/sing-box/hy2-cert.pem"
HY2_KEY_PATH = (os.getenv("HY2_KEY_PATH") or "").strip() or "/etc/sing-box/hy2-key.pem"

SUBSCRIPTION_UPDATE_INTERVAL = int(os.getenv("SUBSCRIPTION_UPDATE_INTERVAL") or 6)  # часы
