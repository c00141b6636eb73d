"""Entry point for running the PingLater API as a module.

Usage:
    python -m pinglater.api

Host and port come from PINGLATER_API_HOST and PINGLATER_API_PORT.
"""

from .app import main

if __name__ == "__main__":
    main()
