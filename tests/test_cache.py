from utils.cache import TTLCache, cache_keys


class Clock:
    def __init__(self):
        self.now = 500.0

    def __call__(self):
        return self.now


def test_ttl_boundary():
    clock = Clock()
    cache = TTLCache(default_ttl=60, clock=clock)
    cache.set("k", "v")

    clock.now = 500.0 + 60 - 0.001
    assert cache.get("k") == "v"

    clock.now = 500.0 + 60 + 0.001
    assert cache.get("k") is None
    assert len(cache) == 0


def test_expired_key_stays_evicted():
    clock = Clock()
    cache = TTLCache(default_ttl=10, clock=clock)
    cache.set("k", "v")
    clock.now += 11
    assert not cache.has("k")
    clock.now -= 11
    assert cache.get("k") is None


def test_set_overwrites_and_restarts_ttl():
    clock = Clock()
    cache = TTLCache(default_ttl=10, clock=clock)
    cache.set("k", 1)
    clock.now += 8
    cache.set("k", 2)
    clock.now += 8
    assert cache.get("k") == 2


def test_per_entry_ttl():
    clock = Clock()
    cache = TTLCache(default_ttl=100, clock=clock)
    cache.set("short", "v", ttl=1)
    clock.now += 2
    assert cache.get("short") is None


def test_falsy_values_are_cached():
    cache = TTLCache(clock=Clock())
    cache.set("empty", [])
    assert cache.has("empty")
    assert cache.get("empty", "missing") == []


def test_invalidate_and_prefix():
    cache = TTLCache(clock=Clock())
    cache.set(cache_keys.teacher_sections("t1"), ["a"])
    cache.set(cache_keys.teacher_sections("t2"), ["b"])
    cache.set(cache_keys.section("s1"), "section")

    assert cache.invalidate(cache_keys.section("s1"))
    assert not cache.invalidate(cache_keys.section("s1"))
    assert cache.invalidate_prefix(cache_keys.TEACHER_SECTIONS_PREFIX) == 2
    assert len(cache) == 0


def test_grade_keys_do_not_collide_across_hidden_flag():
    visible = cache_keys.user_grades("u1", include_hidden=False)
    everything = cache_keys.user_grades("u1", include_hidden=True)
    assert visible != everything
    assert visible.startswith(cache_keys.user_grades_prefix("u1"))
    assert everything.startswith(cache_keys.user_grades_prefix("u1"))
    # u1 prefix must not match u10
    assert not cache_keys.user_grades("u10", False).startswith(cache_keys.user_grades_prefix("u1"))


def test_stale_value_survives_expiry_but_not_invalidation():
    clock = Clock()
    cache = TTLCache(default_ttl=10, clock=clock)
    cache.set("list", ["a"], retain=True)
    cache.set("plain", ["b"])
    clock.now += 20

    assert cache.get("list") is None
    assert cache.get_stale("list") == ["a"]
    assert cache.get("plain") is None
    assert cache.get_stale("plain") is None

    cache.set("list", ["a"], retain=True)
    cache.invalidate("list")
    assert cache.get_stale("list") is None


def test_sweep_drops_expired_entries():
    clock = Clock()
    cache = TTLCache(default_ttl=10, clock=clock)
    cache.set("old", 1)
    clock.now += 5
    cache.set("new", 2)
    clock.now += 6
    assert cache.sweep() == 1
    assert cache.get("new") == 2


def test_clear():
    cache = TTLCache(clock=Clock())
    cache.set("a", 1, retain=True)
    cache.clear()
    assert len(cache) == 0
    assert cache.get_stale("a") is None
