"""
main.py: Server launcher and entry point.

Run this file to start the companion backend:

    python main.py

This file does NOT contain application logic. See app.py for the FastAPI
application, service wiring, and background loops.

Dashboard (separate process):
    streamlit run dashboard/app.py
"""

from __future__ import annotations

import os

import uvicorn


HOST = os.getenv("COMPANION_HOST", "127.0.0.1")
PORT = int(os.getenv("COMPANION_PORT", "8000"))


def main() -> None:
    """Start the companion backend."""
    print("=" * 60)
    print("  Intra Companion local backend")
    print("=" * 60)
    print(f"  Server   : http://{HOST}:{PORT}")
    print(f"  Health   : http://{HOST}:{PORT}/health")
    print(f"  API docs : http://{HOST}:{PORT}/docs")
    print("  Dashboard: streamlit run dashboard/app.py")
    print("=" * 60)
    print("  Press CTRL+C to stop\n")

    uvicorn.run(
        "app:app",
        host=HOST,
        port=PORT,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
