import pytest

from tenantflags.models import KillSwitchScope
from tenantflags.settings import Environment
from tenantflags.store.keys import KeySpace, RecordKey

pytestmark = pytest.mark.unit


@pytest.fixture
def keys(registry):
    return KeySpace(registry)


def test_record_keys(keys):
    assert keys.flag(Environment.PRODUCTION, "beta") == RecordKey(
        "feature-flags-prod#FLAG#beta", "METADATA"
    )
    assert keys.override(Environment.STAGING, "startup-inc", "beta") == RecordKey(
        "feature-flags-staging#TENANT#startup-inc", "FLAG#beta"
    )
    assert keys.kill_switch(Environment.DEVELOPMENT, KillSwitchScope.global_scope()) == RecordKey(
        "feature-flags-dev#EMERGENCY", "GLOBAL"
    )
    assert keys.kill_switch(Environment.DEVELOPMENT, KillSwitchScope.for_flag("beta")).sort == (
        "FLAG#beta"
    )


def test_record_key_str(keys):
    assert str(keys.flag(Environment.PRODUCTION, "beta")) == "feature-flags-prod#FLAG#beta|METADATA"


def test_view_keys(keys):
    env = Environment.PRODUCTION

    assert keys.flags_by_recency(env) == "feature-flags-prod#FLAGS"
    assert keys.flags_by_owner(env, "growth") == "feature-flags-prod#OWNER#growth"
    assert keys.flags_by_expiry(env) == "feature-flags-prod#EXPIRES"
    assert keys.flag_environments("beta") == "GLOBAL#FLAG#beta"
    assert keys.flag_tenants(env, "beta") == "feature-flags-prod#FLAG#beta#TENANTS"
    assert keys.tenant_flags(env, "startup-inc") == "feature-flags-prod#TENANT#startup-inc#FLAGS"
    assert keys.kill_switch_scopes(env) == "feature-flags-prod#EMERGENCY#SCOPES"


def test_environments_never_share_keys(keys):
    record_keys = {keys.flag(env, "beta") for env in Environment}

    assert len(record_keys) == len(Environment)


def test_scope_round_trip():
    for scope in (KillSwitchScope.global_scope(), KillSwitchScope.for_flag("beta")):
        assert KillSwitchScope.from_key(scope.key) == scope
    assert KillSwitchScope.global_scope().is_global is True
    assert str(KillSwitchScope.for_flag("beta")) == "FLAG#beta"
