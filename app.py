#!/usr/bin/env python3
"""Serve the cigate HTTP API."""

import logging
import os
import sys

from cigate import create_app
from cigate.config import Config

if __name__ == "__main__":
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = create_app()
    state = app.extensions["cigate"]

    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", 5000))
    debug = os.environ.get("FLASK_ENV") == "development"

    print(f"cigate API on http://{host}:{port}/api")
    print(f"{len(state['catalog'])} template(s) from {Config.CATALOG_PATH}, {state['backend'].name} backend")

    try:
        app.run(host=host, port=port, debug=debug)
    except KeyboardInterrupt:
        pass
    finally:
        state["backend"].close()
        print("\ncigate stopped")
    sys.exit(0)
