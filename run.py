#!/usr/bin/env python3
"""
Soundpost Launcher
Starts the API server that backs the web frontend and the terminal player.

    python run.py [--port 5000] [--debug]
"""
# Gevent must patch before any other imports that use socket/threading (so the API can handle multiple requests concurrently).
from gevent import monkey
monkey.patch_all()

import logging
import sys


def _arg_value(flag: str):
    if flag in sys.argv:
        index = sys.argv.index(flag)
        if index + 1 < len(sys.argv):
            return sys.argv[index + 1]
    return None


def main():
    debug = "--debug" in sys.argv
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from shared.api import start_api

    port = _arg_value("--port")
    try:
        start_api(port=int(port) if port else None, debug=debug)
    except ValueError as e:
        print(f"FATAL: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
