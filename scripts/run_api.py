#!/usr/bin/env python
"""
Serve the pricing API with uvicorn.

Usage:
    python scripts/run_api.py [port]
"""
import sys
from pathlib import Path

import uvicorn

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from kiosk_pricing.config.settings import get_settings


def main():
    port = int(sys.argv[1]) if len(sys.argv) > 1 else 8000
    settings = get_settings()

    print(f"Starting Kiosk Pricing API on port {port} (timezone {settings.timezone})...")
    uvicorn.run(
        "kiosk_pricing.api.main:app",
        host="0.0.0.0",
        port=port,
        reload=True,
        reload_dirs=[str(src_path)],
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
