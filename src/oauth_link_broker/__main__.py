"""Run the broker with uvicorn: ``python -m oauth_link_broker``."""

from __future__ import annotations

import logging
import os

import uvicorn


def main() -> None:
    logging.basicConfig(
        level=os.getenv("OAUTH_BROKER_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    uvicorn.run(
        "oauth_link_broker.servers.app:create_app",
        factory=True,
        host=os.getenv("OAUTH_BROKER_HOST", "127.0.0.1"),
        port=int(os.getenv("OAUTH_BROKER_PORT", "5000")),
        proxy_headers=True,
    )


if __name__ == "__main__":
    main()
