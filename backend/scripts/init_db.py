#!/usr/bin/env python3
"""
Create the database schema
==========================

Creates every table defined in app.models plus the partial unique index
that backs webhook and request idempotency claims. Safe to run again:
existing tables and the index are left as they are.

Usage:
    python3 scripts/init_db.py
    DATABASE_URL=postgresql://... python3 scripts/init_db.py
"""
import os
import sys

from dotenv import load_dotenv

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
BACKEND_DIR = os.path.abspath(os.path.join(SCRIPT_DIR, '..'))
sys.path.insert(0, BACKEND_DIR)

load_dotenv(os.path.join(BACKEND_DIR, '.env'))

from app.core.database import Base, init_db  # noqa: E402
from app.core.logging_config import setup_logging  # noqa: E402


def main():
    setup_logging()
    init_db()
    print(f"Schema ready: {len(Base.metadata.tables)} tables")


if __name__ == "__main__":
    main()
