#!/usr/bin/env python
"""
Create the pricing tables in the configured database.

Usage:
    python scripts/init_db.py
"""
import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from kiosk_pricing.config.settings import get_settings
from kiosk_pricing.db.database import init_db


def main():
    settings = get_settings()
    print(f"Creating tables in {settings.database_url} ...")
    init_db()
    print("✅ Database ready")


if __name__ == "__main__":
    main()
