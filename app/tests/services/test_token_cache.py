import threading

from app.core.token_cache import TokenCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class CountingFetch:
    def __init__(self, expires_in=3600):
        self.calls = 0
        self.expires_in = expires_in

    def __call__(self):
        self.calls += 1
        return f"token-{self.calls}", self.expires_in


def test_token_is_fetched_once_and_reused():
    fetch, clock = CountingFetch(), FakeClock()
    cache = TokenCache(fetch, refresh_margin=60, clock=clock)

    assert cache.get() == "token-1"
    clock.now += 3000
    assert cache.get() == "token-1"
    assert fetch.calls == 1


def test_token_refreshes_inside_margin():
    fetch, clock = CountingFetch(), FakeClock()
    cache = TokenCache(fetch, refresh_margin=60, clock=clock)
    cache.get()

    clock.now += 3600 - 60
    assert cache.get() == "token-2"
    assert fetch.calls == 2


def test_invalidate_forces_refetch():
    fetch = CountingFetch()
    cache = TokenCache(fetch, clock=FakeClock())
    cache.get()
    cache.invalidate()

    assert cache.get() == "token-2"


def test_instances_do_not_share_tokens():
    a = TokenCache(CountingFetch(), clock=FakeClock())
    b = TokenCache(lambda: ("other", 3600), clock=FakeClock())

    assert a.get() == "token-1"
    assert b.get() == "other"


def test_concurrent_callers_trigger_one_fetch():
    gate = threading.Event()
    calls = []

    def slow_fetch():
        calls.append(1)
        gate.wait(timeout=2)
        return "shared", 3600

    cache = TokenCache(slow_fetch)
    results = []
    threads = [threading.Thread(target=lambda: results.append(cache.get())) for _ in range(5)]
    for t in threads:
        t.start()
    gate.set()
    for t in threads:
        t.join(timeout=5)

    assert results == ["shared"] * 5
    assert len(calls) == 1
