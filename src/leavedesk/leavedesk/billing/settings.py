from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from ..core.exceptions import ConfigurationError

REQUIRED_VARIABLES = (
    ("LEMONSQUEEZY_API_KEY", "api_key"),
    ("LEMONSQUEEZY_STORE_ID", "store_id"),
    ("LEMONSQUEEZY_WEBHOOK_SECRET", "webhook_secret"),
)


@dataclass(frozen=True)
class BillingConfig:
    api_key: str
    store_id: str
    webhook_secret: str


def validate_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Read the provider credentials, failing on the first missing or blank variable."""
    env = os.environ if env is None else env
    values = {}
    for name, field_name in REQUIRED_VARIABLES:
        value = (env.get(name) or "").strip()
        if not value:
            raise ConfigurationError(f"Missing required environment variable: {name}")
        values[field_name] = value
    return BillingConfig(**values)


def billing_config_from_settings(settings: Any) -> BillingConfig:
    """The same checks against a settings module; run at startup when the provider is enabled."""
    return validate_billing_config(
        {name: str(getattr(settings, name, "") or "") for name, _ in REQUIRED_VARIABLES}
    )
