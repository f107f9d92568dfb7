"""
hamsterhub.api.__main__ — Entry point for ``python -m hamsterhub.api``
======================================================================

Wiring:
1. Load .env (secrets).
2. Configure logging.
3. Load config.yaml for the listen port.
4. Serve the FastAPI app with uvicorn (blocking).
"""

from __future__ import annotations

import logging

import uvicorn
from dotenv import load_dotenv

from hamsterhub.config import load_config

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("hamsterhub")


def main() -> None:
    """Bootstrap and run the HamsterHub API."""
    load_dotenv()

    cfg = load_config()
    logger.info("Config loaded — Community: %s", cfg.community_name)

    uvicorn.run(
        "hamsterhub.api.main:app",
        host="0.0.0.0",
        port=cfg.dashboard_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
