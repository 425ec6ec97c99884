#!/usr/bin/env python3
"""
Currency Exchange Shop Entry Point

Starts the FastAPI server with the exchange shop system.
"""

import sys

from currency_exchange.api import run_server
from currency_exchange.config import get_config


if __name__ == "__main__":
    config = get_config()

    print("💱 Starting Currency Exchange Shop...")
    print(f"🗄️  Storage: {config.database_url}")
    print("🔒 Audit trail active" if config.enable_audit_logging else "⚠️  Audit trail disabled")
    print("💰 All balances use Decimal precision")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=False  # Set to True for development
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down Currency Exchange Shop...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
