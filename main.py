#!/usr/bin/env python3
"""
Handball - OpenID Connect login front door.
"""

import argparse
import json
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)


def discover() -> int:
    """Run provider discovery with the current environment and print the result."""
    from handball.auth.config import load_provider_config, load_service_settings
    from handball.auth.errors import ConfigError, DiscoveryError
    from handball.auth.oidc import OIDCClient

    try:
        settings = load_service_settings()
        client = OIDCClient.discover(load_provider_config(), timeout=settings.http_timeout_seconds)
    except (ConfigError, DiscoveryError) as e:
        print(f"Discovery failed: {e}", file=sys.stderr)
        return 1

    d = client.discovered
    print(
        json.dumps(
            {
                "ok": True,
                "issuer": d.issuer,
                "authorization_endpoint": d.authorization_endpoint,
                "token_endpoint": d.token_endpoint,
                "jwks_uri": d.jwks_uri,
                "signing_keys": len(d.signing_keys),
                "signing_algorithms": list(d.signing_algorithms),
                "redirect_url": d.config.redirect_url,
            },
            indent=2,
        )
    )
    return 0


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Handball OpenID Connect relying party",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check that the provider in AUTH_ISSUER can be discovered
  python main.py --discover

  # Serve the login routes
  python main.py --serve --port 8000
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP server")
    parser.add_argument(
        "--discover", action="store_true", help="Fetch the provider discovery document and JWKS, then exit"
    )
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")

    args = parser.parse_args()

    if args.discover:
        sys.exit(discover())

    if args.serve:
        from handball.api.server import run

        run(host=args.host, port=args.port)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
