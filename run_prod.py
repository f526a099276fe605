#!/usr/bin/env python3
"""
Production runner for the Meetpoint API
- Serves the Flask API (meetpoint.app) with waitress
- Loads .env for GOOGLE_MAPS_API_KEY and other settings

Usage:
  python3 run_prod.py

Environment:
  PORT=8000 (default)        # Port to bind
  HOST=0.0.0.0 (default)     # Host interface
  GOOGLE_MAPS_API_KEY=...    # Required for the midpoint endpoints
  WSGI_THREADS=8             # waitress worker threads
  TRUST_PROXY_HEADERS=1      # honour X-Forwarded-* from one proxy hop
"""

import os
import ssl
from pathlib import Path

from dotenv import load_dotenv
from werkzeug.middleware.proxy_fix import ProxyFix

PROJECT_ROOT = Path(__file__).resolve().parent

# Load env from .env if present
load_dotenv(dotenv_path=PROJECT_ROOT / '.env')

from meetpoint.app import create_default_app  # noqa: E402
from meetpoint.config import get_settings  # noqa: E402

api_app = create_default_app()

# Respect reverse proxy headers (X-Forwarded-*) when behind a proxy/HTTPS terminator
if os.getenv('TRUST_PROXY_HEADERS', '1') not in ('0', 'false', 'False', 'no', 'off'):
    # Trust a single proxy hop by default; tune via env
    x_for = int(os.getenv('PROXY_FIX_X_FOR', '1'))
    x_proto = int(os.getenv('PROXY_FIX_X_PROTO', '1'))
    x_host = int(os.getenv('PROXY_FIX_X_HOST', '1'))
    x_port = int(os.getenv('PROXY_FIX_X_PORT', '1'))
    x_prefix = int(os.getenv('PROXY_FIX_X_PREFIX', '1'))
    api_app.wsgi_app = ProxyFix(api_app.wsgi_app, x_for=x_for, x_proto=x_proto, x_host=x_host, x_port=x_port, x_prefix=x_prefix)


def main():
    host = os.getenv('HOST', '0.0.0.0')
    try:
        port = int(os.getenv('PORT', '8000'))
    except ValueError:
        port = 8000

    if not get_settings().maps_configured:
        print("\n" + "="*60)
        print("Warning: GOOGLE_MAPS_API_KEY is not configured.")
        print("The API will start, but the midpoint endpoints will return errors.")
        print("Set it in your environment or .env file.")
        print("="*60 + "\n")

    ssl_cert = os.getenv('SSL_CERTFILE') or os.getenv('SSL_CERT')
    ssl_key = os.getenv('SSL_KEYFILE') or os.getenv('SSL_KEY')
    ssl_ca = os.getenv('SSL_CA_FILE') or os.getenv('SSL_CA')

    if ssl_cert and ssl_key:
        print(f"\n🔐 Starting Meetpoint API (prod) on https://{host}:{port}")

        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        if ssl_ca:
            context.load_verify_locations(ssl_ca)
        context.load_cert_chain(certfile=ssl_cert, keyfile=ssl_key)

        # waitress has no TLS support; Werkzeug's run_simple serves HTTPS directly
        from werkzeug.serving import run_simple
        run_simple(hostname=host, port=port, application=api_app, ssl_context=context, threaded=True)
    else:
        print(f"\n🚀 Starting Meetpoint API (prod) on http://{host}:{port}")
        from waitress import serve
        serve(api_app, host=host, port=port, threads=int(os.getenv('WSGI_THREADS', '8')))


if __name__ == '__main__':
    main()
