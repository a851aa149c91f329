from cache import TTLCache


class Clock:
    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


def test_missing_key():
    cache = TTLCache(ttl=300)
    hit = cache.lookup("outages:24")
    assert not hit.present and not hit.fresh and hit.value is None


def test_entry_goes_stale_but_is_kept():
    clock = Clock(1000)
    cache = TTLCache(ttl=300, clock=clock)
    cache.set("k", {"scores": []})

    clock.t = 1299
    assert cache.lookup("k").fresh

    clock.t = 1300
    hit = cache.lookup("k")
    assert hit.stale
    assert hit.value == {"scores": []}


def test_set_refreshes_and_invalidate_drops():
    clock = Clock(0)
    cache = TTLCache(ttl=10, clock=clock)
    cache.set("k", 1)
    clock.t = 50
    cache.set("k", 2)
    assert cache.lookup("k").fresh and cache.lookup("k").value == 2

    cache.invalidate("k")
    cache.invalidate("never-set")
    assert not cache.lookup("k").present

    cache.set("a", 1)
    cache.clear()
    assert not cache.lookup("a").present
