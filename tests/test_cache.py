from datetime import datetime, timezone

from qualitygate.cache import ResultCache, fingerprint
from qualitygate.schemas import ValidationOutcome


def outcome(entity_id="c1"):
    return ValidationOutcome.build(
        entity_type="contact",
        entity_id=entity_id,
        validated_at=datetime(2026, 3, 11, tzinfo=timezone.utc),
    )


def test_fingerprint_ignores_key_order():
    first = fingerprint("contact", None, {"name": "Ann", "type": "person"})
    second = fingerprint("contact", None, {"type": "person", "name": "Ann"})
    assert first == second


def test_fingerprint_ignores_rule_selection_order():
    assert fingerprint("contact", ["b", "a"], {}) == fingerprint("contact", ["a", "b"], {})


def test_fingerprint_separates_selection_and_type():
    payload = {"name": "Ann"}
    assert fingerprint("contact", None, payload) != fingerprint("contact", ["a"], payload)
    assert fingerprint("contact", None, payload) != fingerprint("workflow", None, payload)
    assert fingerprint("contact", None, payload) != fingerprint("contact", None, {"name": "Bob"})


def test_hit_within_ttl(cache_clock):
    cache = ResultCache(ttl_seconds=300, clock=cache_clock)
    cache.put("k", outcome())
    cache_clock.advance(299)
    assert cache.get("k") == outcome()


def test_stale_entry_reads_as_miss(cache_clock):
    cache = ResultCache(ttl_seconds=300, clock=cache_clock)
    cache.put("k", outcome())
    cache_clock.advance(301)
    assert cache.get("k") is None
    # Not evicted, only ignored until replaced.
    assert cache.stats() == {"size": 1, "ttl": 300}


def test_put_replaces_stale_entry(cache_clock):
    cache = ResultCache(ttl_seconds=300, clock=cache_clock)
    cache.put("k", outcome("old"))
    cache_clock.advance(400)
    cache.put("k", outcome("new"))
    assert cache.get("k").entity_id == "new"


def test_clear_and_stats(cache_clock):
    cache = ResultCache(ttl_seconds=60, clock=cache_clock)
    cache.put("a", outcome())
    cache.put("b", outcome())
    assert cache.stats() == {"size": 2, "ttl": 60}
    cache.clear()
    assert cache.stats()["size"] == 0
    assert cache.get("a") is None
