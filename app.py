#!/usr/bin/env python3
"""
Wallet Watch - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
- Compatible with PM2 process management
- Handles SIGINT/SIGTERM gracefully
- Configuration from .env / environment, overridden by flags

============================================================
USAGE
============================================================
Direct execution:
    python app.py
    python app.py --single-cycle --log-format text

With PM2:
    pm2 start app.py --interpreter python --name wallet-watch

============================================================
"""

import sys

from wallet_watch.cli import main


if __name__ == "__main__":
    sys.exit(main())
