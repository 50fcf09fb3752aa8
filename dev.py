#!/usr/bin/env python3

"""
Development utility for the Gamja MCP Server
"""

import os
import sys
import asyncio
import secrets
import argparse
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Tuple

import httpx

from auth import compute_code_challenge
from config import Config

REQUIRED_VARS = {
    "MCP_API_KEY": "Content API key sent as x-mcp-api-key",
    "AUTH_USERNAME": "Login username for the OAuth consent page",
    "AUTH_PASSWORD": "Login password for the OAuth consent page",
}

PRODUCTION_VARS = {
    "REDIS_URL": "Redis for codes and tokens shared across instances",
}


def run_command(cmd: str, capture_output: bool = False, check: bool = True) -> Optional[str]:
    """Run a shell command; returns stripped stdout when captured"""
    result = subprocess.run(cmd, shell=True, capture_output=capture_output, text=True, check=check)
    if capture_output:
        return result.stdout.strip()
    return None


def run_server():
    """Run development server with auto-reload"""
    print("🚀 Starting development server...")
    os.environ.setdefault("ENVIRONMENT", "development")
    run_command(f"{sys.executable} -m uvicorn main:app --reload --host 0.0.0.0 --port {os.getenv('PORT', '8000')}")


def generate_secret_key() -> str:
    """Generate a value suitable for MCP_AUTH_TOKEN"""
    secret = secrets.token_urlsafe(32)
    print("🔐 Generated secret:")
    print(f"   MCP_AUTH_TOKEN={secret}")
    return secret


def generate_pkce_pair() -> Tuple[str, str]:
    """Generate a PKCE code_verifier and its S256 code_challenge"""
    verifier = secrets.token_urlsafe(48)
    return verifier, compute_code_challenge(verifier)


def check_env(env: Optional[Mapping[str, str]] = None) -> bool:
    """Check environment configuration"""
    env = os.environ if env is None else env
    print("🔍 Checking environment configuration...")

    missing_required = [name for name in REQUIRED_VARS if not env.get(name)]
    missing_production = []
    if env.get("ENVIRONMENT", "production") == "production":
        missing_production = [name for name in PRODUCTION_VARS if not env.get(name)]

    for name in missing_required:
        print(f"❌ Missing required variable {name}: {REQUIRED_VARS[name]}")
    for name in missing_production:
        print(f"⚠️  Missing production variable {name}: {PRODUCTION_VARS[name]}")

    try:
        config = Config(env)
    except ValueError as e:
        print(f"❌ Invalid configuration: {e}")
        return False

    if not missing_required and not missing_production:
        print("✅ Environment configuration looks good!")

    print("\n📋 Current configuration:")
    print(f"   Environment: {config.environment}")
    print(f"   Host: {config.host}")
    print(f"   Port: {config.port}")
    print(f"   Content API: {config.content_api_url}")
    print(f"   Store: {'Redis' if config.redis_url else 'in-memory'}")
    print(f"   Code expiry: {config.oauth_code_expiry}s, token expiry: {config.oauth_token_expiry}s")

    return len(missing_required) == 0


def status(url: str = "http://localhost:8000") -> bool:
    """Show server status"""
    print("📊 Server Status:")

    async def check_health():
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{url}/health", headers={"Accept": "application/json"}, timeout=5)
            response.raise_for_status()
            return response.json()

    try:
        health = asyncio.run(check_health())
    except (httpx.HTTPError, ValueError) as e:
        print(f"❌ Server at {url} is not responding: {e}")
        return False

    print(f"✅ Server at {url} is running")
    print(f"   Status: {health.get('status')}")
    print(f"   Version: {health.get('version')}")
    print(f"   Environment: {health.get('environment')}")
    return True


def main(argv=None) -> int:
    """Main CLI interface"""
    parser = argparse.ArgumentParser(
        description="Development utility for Gamja MCP Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Available commands:
  run         Run development server
  check       Check environment configuration
  secret      Generate a legacy bearer token
  pkce        Generate a PKCE verifier/challenge pair
  status      Show server status

Examples:
  python dev.py check        # Validate environment variables
  python dev.py run          # Run development server
  python dev.py pkce         # Print a code_verifier and code_challenge
        """
    )

    parser.add_argument(
        "command",
        choices=["run", "check", "secret", "pkce", "status"],
        help="Command to execute"
    )
    parser.add_argument(
        "--url",
        default="http://localhost:8000",
        help="Server URL for the status command"
    )

    args = parser.parse_args(argv)

    # Change to script directory
    os.chdir(Path(__file__).parent)

    print("🛠️  Gamja MCP Server - Development Utility")
    print("=" * 60)

    if args.command == "run":
        run_server()

    elif args.command == "check":
        return 0 if check_env() else 1

    elif args.command == "secret":
        generate_secret_key()

    elif args.command == "pkce":
        verifier, challenge = generate_pkce_pair()
        print(f"code_verifier={verifier}")
        print(f"code_challenge={challenge}")
        print("code_challenge_method=S256")

    elif args.command == "status":
        return 0 if status(args.url) else 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
