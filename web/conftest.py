import pytest
from django.core.cache import cache


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    from apps.donations.http_adapters import receipts_cb, stripe_cb

    settings.USE_STRIPE_GATEWAY = False
    settings.USE_HTTP_NOTIFIER = False
    settings.DAILY_GIVING_END_DATE = None
    # throttle counters and breaker state must not leak between tests
    cache.clear()
    receipts_cb.reset()
    stripe_cb.reset()
    yield
    receipts_cb.reset()
    stripe_cb.reset()
