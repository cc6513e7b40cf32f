"""
Natours server entry point
"""
import argparse

import uvicorn

from natours.config.loader import get_settings


def main():
    """Start the Natours server."""
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Natours - tour booking web application server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Production (default)
  python -m natours

  # Development logging and auto-reload
  NATOURS_ENVIRONMENT=development python -m natours --reload
        """
    )
    parser.add_argument('--host', default=settings.listen_host, help='Interface to bind')
    parser.add_argument('--port', type=int, default=settings.listen_port, help='Port to listen on')
    parser.add_argument('--reload', action='store_true', help='Restart on code changes')
    args = parser.parse_args()

    uvicorn.run(
        "natours.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        access_log=False,
        proxy_headers=settings.trust_proxy,
    )


if __name__ == '__main__':
    main()
