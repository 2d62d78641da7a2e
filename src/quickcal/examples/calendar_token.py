"""
Get a Google Calendar access token for QuickCal.

You'll need to set the GOOGLE_CLIENT_ID environment variable (and
GOOGLE_CLIENT_SECRET for "Desktop app" OAuth clients). A .env file in the
working directory is picked up automatically.

Usage: python -m quickcal.examples.calendar_token
"""

import asyncio
import logging
import sys

from dotenv import load_dotenv

from quickcal.auth.client.models.errors import OAuth2Error
from quickcal.auth.client.oauth_client import TokenLifecycleManager
from quickcal.auth.config import AuthSettings


async def main() -> int:
    settings = AuthSettings.from_env()
    manager = TokenLifecycleManager.from_settings(settings)
    try:
        token = await manager.get_access_token()
    except OAuth2Error as e:
        logging.error(f"Authorization failed: {e}")
        return 1
    finally:
        await manager.close()

    # Never print the full token.
    print(f"Access token acquired: {token[:6]}... ({len(token)} chars)")
    return 0


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    sys.exit(asyncio.run(main()))
