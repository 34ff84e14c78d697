"""TenantAuth entrypoint."""

import argparse
import asyncio

import uvicorn

from tenantauth.config.settings import get_settings


def cli() -> None:
    """Serve the auth API with uvicorn."""
    parser = argparse.ArgumentParser(prog="tenantauth")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument(
        "--init-db", action="store_true", help="create tables and exit (development only)"
    )
    args = parser.parse_args()

    if args.init_db:
        from tenantauth.storage.database import init_db

        asyncio.run(init_db())
        return

    settings = get_settings()
    uvicorn.run(
        "tenantauth.web.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    cli()
