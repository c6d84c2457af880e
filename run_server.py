#!/usr/bin/env python
"""Run the Nabi web server."""

import uvicorn

from nabi.config import get_settings


def main():
    """Run the server."""
    settings = get_settings()
    uvicorn.run(
        "nabi.main:app",
        host="0.0.0.0",
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
