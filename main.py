import logging
from urllib.parse import urlparse

import uvicorn

from config import API_URL, LOG_LEVEL

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def main() -> None:
    host = "0.0.0.0"
    port = 8085
    parsed = urlparse(API_URL)
    if parsed.port:
        port = parsed.port

    uvicorn.run("api.main:app", host=host, port=port)


if __name__ == "__main__":
    main()
