#!/usr/bin/env python3
"""
GitConnect Backend API Server

    python -m gitconnect.run_server
    uvicorn gitconnect.run_server:app
"""

import logging
import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from gitconnect.app import create_app  # noqa: E402
from gitconnect.config import get_settings  # noqa: E402

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = create_app(settings)


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    logging.getLogger(__name__).info(f"Serving GitConnect backend on http://0.0.0.0:{port}")
    uvicorn.run(app, host="0.0.0.0", port=port)
