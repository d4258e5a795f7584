"""
AutoOrganize Server Entry Point

Run with: python main.py
Or with uvicorn: uvicorn app:app --reload

Environment:
    AUTOORG_HOST / AUTOORG_PORT: bind address (default 127.0.0.1:8000)
    AUTOORG_CONFIG: YAML config file (otherwise environment variables)
    ENVIRONMENT: "development" enables auto-reload
"""

import os

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "app:app",
        host=os.getenv("AUTOORG_HOST", "127.0.0.1"),
        port=int(os.getenv("AUTOORG_PORT", "8000")),
        reload=os.getenv("ENVIRONMENT", "development") == "development",
        log_level=os.getenv("AUTOORG_LOG_LEVEL", "info").lower(),
    )
