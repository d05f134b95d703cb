"""
Deployment configuration for the Data Extension save relay.

Values come from environment variables (optionally via a .env file loaded with
python-dotenv). Nothing here is ever taken from an inbound request.

Required:
  SFMC_CLIENT_ID, SFMC_CLIENT_SECRET, SFMC_SUBDOMAIN

Optional:
  SFMC_ACCOUNT_ID (or legacy SFMC_MID), DE_EXTERNAL_KEY, SFMC_AUTH_BASE_DOMAIN,
  SFMC_REST_BASE_DOMAIN, SFMC_REQUEST_TIMEOUT, SFMC_TOKEN_SAFETY_MARGIN,
  MAX_FIELDS, RELAY_ENV
"""

import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

DEFAULT_DE_EXTERNAL_KEY = "D4344287-6DDF-49F6-B7A5-A7E0043A3C2C"
DEFAULT_AUTH_BASE_DOMAIN = "auth.marketingcloudapis.com"
DEFAULT_REST_BASE_DOMAIN = "rest.marketingcloudapis.com"
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_TOKEN_SAFETY_MARGIN = 60
DEFAULT_MAX_FIELDS = 20

# Env var name for every required setting, in the order they are reported.
_REQUIRED_ENV_VARS = {
    "client_id": "SFMC_CLIENT_ID",
    "client_secret": "SFMC_CLIENT_SECRET",
    "subdomain": "SFMC_SUBDOMAIN",
}


def _env(name: str) -> Optional[str]:
    """Return a stripped env var, or None when unset or blank."""
    value = os.getenv(name, "").strip()
    return value or None


class RelaySettings(BaseModel):
    """One credential set and one target Data Extension per deployment."""

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    subdomain: Optional[str] = None
    account_id: Optional[str] = None
    de_external_key: str = DEFAULT_DE_EXTERNAL_KEY
    auth_base_domain: str = DEFAULT_AUTH_BASE_DOMAIN
    rest_base_domain: str = DEFAULT_REST_BASE_DOMAIN
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    token_safety_margin: int = DEFAULT_TOKEN_SAFETY_MARGIN
    max_fields: int = DEFAULT_MAX_FIELDS
    environment: str = "production"

    @classmethod
    def from_env(cls) -> "RelaySettings":
        """
        Build settings from the current process environment.

        Blank values are treated as missing so that ``SFMC_CLIENT_ID=`` in a
        .env file is reported the same way as an absent variable.
        """
        return cls(
            client_id=_env("SFMC_CLIENT_ID"),
            client_secret=_env("SFMC_CLIENT_SECRET"),
            subdomain=_env("SFMC_SUBDOMAIN"),
            account_id=_env("SFMC_ACCOUNT_ID") or _env("SFMC_MID"),
            de_external_key=_env("DE_EXTERNAL_KEY") or DEFAULT_DE_EXTERNAL_KEY,
            auth_base_domain=_env("SFMC_AUTH_BASE_DOMAIN") or DEFAULT_AUTH_BASE_DOMAIN,
            rest_base_domain=_env("SFMC_REST_BASE_DOMAIN") or DEFAULT_REST_BASE_DOMAIN,
            request_timeout=float(_env("SFMC_REQUEST_TIMEOUT") or DEFAULT_REQUEST_TIMEOUT),
            token_safety_margin=int(_env("SFMC_TOKEN_SAFETY_MARGIN") or DEFAULT_TOKEN_SAFETY_MARGIN),
            max_fields=int(_env("MAX_FIELDS") or DEFAULT_MAX_FIELDS),
            environment=(_env("RELAY_ENV") or "production").lower(),
        )

    def missing_required(self) -> List[str]:
        """Return env var names of required settings that are not set."""
        return [
            env_name
            for attr, env_name in _REQUIRED_ENV_VARS.items()
            if not getattr(self, attr)
        ]

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def auth_url(self) -> str:
        return f"https://{self.subdomain}.{self.auth_base_domain}/v2/token"

    @property
    def rest_base_url(self) -> str:
        return f"https://{self.subdomain}.{self.rest_base_domain}/"

    @property
    def rowset_url(self) -> str:
        return (
            f"{self.rest_base_url}hub/v1/dataevents/"
            f"key:{self.de_external_key}/rowset"
        )
