"""Settings-backed store URL builder and website information."""
from typing import Mapping, Optional
from urllib.parse import urlencode

from coingate_merchant.config import ConfigurationError, Settings, get_settings


class StoreUrlBuilder:
    """Builds absolute URLs under the store's public base URL."""

    def __init__(self, base_url: Optional[str] = None) -> None:
        base_url = base_url or get_settings().store_base_url
        if not base_url:
            raise ConfigurationError("Store base URL is not configured")
        self.base_url = base_url.rstrip("/")

    def get_url(self, route: str, query: Optional[Mapping[str, str]] = None) -> str:
        url = f"{self.base_url}/{route.strip('/')}"
        if query:
            url = f"{url}?{urlencode(query)}"
        return url


class SettingsStoreInfo:
    """Website information read from settings."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def get_website_name(self) -> str:
        if not self.settings.store_title:
            raise ConfigurationError("Store title is not configured")
        return self.settings.store_title
