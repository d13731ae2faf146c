#!/usr/bin/env python3
"""Start script that reads the PORT environment variable and serves the planning API."""

import os
import sys

import uvicorn

port = os.environ.get("PORT", "8000")

try:
    port_int = int(port)
except ValueError:
    print(f"Warning: Invalid PORT value '{port}', using default 8000", file=sys.stderr)
    port_int = 8000

if __name__ == "__main__":
    print(f"Starting planning API on port {port_int}...", file=sys.stderr)
    uvicorn.run(
        "dayplan.main:app",
        host="0.0.0.0",
        port=port_int,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
