#!/usr/bin/env python3
"""
Entry point for the safepreview local API server.
"""

if __name__ == "__main__":
    import argparse

    import uvicorn

    from safepreview.config import settings

    parser = argparse.ArgumentParser(description="safepreview server")
    parser.add_argument(
        "--port",
        type=int,
        default=settings.PORT,
        help=f"Port to run the server on (default: {settings.PORT})",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=settings.HOST,
        help=f"Host to bind to (default: {settings.HOST})",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        default=False,
        help="Enable auto-reload for development",
    )

    args = parser.parse_args()

    uvicorn.run(
        "safepreview.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.LOG_LEVEL.lower(),
    )
