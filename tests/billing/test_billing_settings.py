from types import SimpleNamespace

import pytest

from src.leavedesk.leavedesk.billing.settings import validate_billing_config
from src.leavedesk.leavedesk.container import build_container
from src.leavedesk.leavedesk.core.exceptions import ConfigurationError

DB_CONFIG = {"host": "localhost", "user": "root", "password": "", "database": "leavedesk_test"}

ENV = {
    "LEMONSQUEEZY_API_KEY": "key",
    "LEMONSQUEEZY_STORE_ID": "store",
    "LEMONSQUEEZY_WEBHOOK_SECRET": "secret",
}


def test_validate_billing_config_reads_all_values():
    config = validate_billing_config(ENV)
    assert (config.api_key, config.store_id, config.webhook_secret) == ("key", "store", "secret")


@pytest.mark.parametrize("missing", sorted(ENV))
def test_validate_billing_config_names_missing_variable(missing):
    env = {**ENV, missing: "  "}
    with pytest.raises(ConfigurationError, match=f"Missing required environment variable: {missing}"):
        validate_billing_config(env)


def test_validate_billing_config_reads_process_environment(monkeypatch):
    for name, value in ENV.items():
        monkeypatch.setenv(name, value)
    assert validate_billing_config().store_id == "store"


def _settings(**overrides):
    return SimpleNamespace(**{**ENV, **overrides})


def test_container_enables_billing_only_with_complete_config():
    container = build_container(db_config=DB_CONFIG, settings=_settings())
    assert container.billing_jobs is not None
    assert container.webhook_secret == "secret"

    with pytest.raises(ConfigurationError, match="LEMONSQUEEZY_STORE_ID"):
        build_container(db_config=DB_CONFIG, settings=_settings(LEMONSQUEEZY_STORE_ID=""))


def test_container_without_api_key_disables_billing_jobs():
    container = build_container(db_config=DB_CONFIG, settings=_settings(LEMONSQUEEZY_API_KEY="", LEMONSQUEEZY_STORE_ID=""))
    assert container.billing_jobs is None
