#!/usr/bin/env python3
"""
Initialize the PowerLink database.
Creates every table; safe to run repeatedly.
"""

import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).parent.parent))

from powerlink.config import settings
from powerlink.core.logging import configure_logging
from powerlink.database import init_db


def main():
    configure_logging(settings.LOG_LEVEL)
    print("Initializing database...")
    print(f"  DATABASE_URL: {settings.DATABASE_URL[:40]}...")
    print(f"  Environment: {settings.ENVIRONMENT}")

    init_db()

    print("Database initialized successfully.")


if __name__ == "__main__":
    main()
