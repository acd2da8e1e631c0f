#!/usr/bin/env python3
"""
CloudPortal -- OpenID Connect sign-in and a session-gated cloud connection API.

Usage:
  python main.py
  python main.py --port 8080
  python main.py --host 0.0.0.0 --reload

Environment variables (see core/config.py for the full list):
  SECRET_KEY          Session cookie signing key (32+ chars). Required unless DEBUG=true.
  OIDC_CLIENT_ID      Application (client) id registered with the provider.
  OIDC_CLIENT_SECRET  Client secret for the code exchange.
  OIDC_REDIRECT_URL   Callback URL registered with the provider (.../auth/openid/return).
  LOGOUT_URL          Provider logout URL the browser is sent to after /logout.
"""

import argparse

import uvicorn

from core.config import get_settings


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="cloudportal",
        description="Run the CloudPortal web front end.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py
  python main.py --port 8080
  DEBUG=true python main.py --reload
        """,
    )
    parser.add_argument(
        "--host",
        default=settings.host,
        help=f"Interface to bind (default: {settings.host})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help=f"Port to listen on (default: {settings.port})",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Restart the server when source files change (development only)",
    )
    args = parser.parse_args()

    uvicorn.run(
        "asgi:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
        proxy_headers=True,
    )


if __name__ == "__main__":
    main()
