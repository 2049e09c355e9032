"""
BharatCRM - Platform client factory
"""

from services.platforms.base import PlatformClient, PlatformError
from services.platforms.facebook import FacebookClient
from services.platforms.instagram import InstagramClient
from services.platforms.google_sheets import GoogleSheetsClient

PLATFORM_CLIENTS = {
    "facebook": FacebookClient,
    "instagram": InstagramClient,
    "google_sheets": GoogleSheetsClient,
}


def get_platform_client(platform: str, **kwargs) -> PlatformClient:
    client_cls = PLATFORM_CLIENTS.get(platform)
    if not client_cls:
        raise PlatformError(f"Unsupported platform: {platform}")
    return client_cls(**kwargs)
