from __future__ import annotations

import os

import uvicorn

from upmon.app import create_app
from upmon.logging_setup import configure_logging
from upmon.settings import load_settings


def main() -> None:
    host = os.getenv("UPMON_HOST", "0.0.0.0").strip() or "0.0.0.0"
    port = int(os.getenv("UPMON_PORT", "8112"))
    settings = load_settings()
    configure_logging(settings.log_level)
    app = create_app(settings)
    uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
