#!/usr/bin/env python3
"""
Server entry point.

HOST / PORT come from the environment (defaults 0.0.0.0:8000).
"""
import os
import sys


def main():
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))

    print(f"[eagate] Serving on http://{host}:{port}")
    try:
        uvicorn.run(
            "eagate.main:app",
            host=host,
            port=port,
            reload=False,
            log_level="info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\n[eagate] Shutting down...")
        sys.exit(0)


if __name__ == "__main__":
    main()
