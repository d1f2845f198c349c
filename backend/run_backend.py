#!/usr/bin/env python3
"""
Backend startup wrapper for the billing service.
"""
import sys

import uvicorn

from backend.core.config import settings


def main() -> None:
    print("[Backend] Starting Inbox Cleaner Pro billing service")
    print(f"[Backend] Server: http://0.0.0.0:{settings.PORT}")
    try:
        uvicorn.run(
            "backend.main:app",
            host="0.0.0.0",
            port=settings.PORT,
            reload=False,
            log_level="info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\n[Backend] Shutting down...")
        sys.exit(0)


if __name__ == "__main__":
    main()
