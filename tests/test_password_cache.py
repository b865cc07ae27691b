"""Tests for the in-memory E2E password cache."""

from cli import password_cache as password_cache_module
from cli.password_cache import PasswordCache


def test_store_and_get():
    cache = PasswordCache()
    assert cache.get() is None
    assert not cache.has_password()

    cache.store('hunter2')

    assert cache.get() == 'hunter2'
    assert cache.has_password()


def test_password_kept_wrapped():
    """The plaintext password is not held on the instance."""
    cache = PasswordCache()
    cache.store('hunter2')

    assert 'hunter2' not in repr(vars(cache))


def test_expiry(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(password_cache_module.time, 'monotonic', lambda: now[0])
    cache = PasswordCache(ttl_seconds=60)
    cache.store('hunter2')

    now[0] += 59
    assert cache.get() == 'hunter2'

    now[0] += 2
    assert cache.get() is None
    assert cache._token is None


def test_no_ttl_never_expires(monkeypatch):
    now = [0.0]
    monkeypatch.setattr(password_cache_module.time, 'monotonic', lambda: now[0])
    cache = PasswordCache(ttl_seconds=None)
    cache.store('hunter2')

    now[0] += 10 ** 9
    assert cache.get() == 'hunter2'


def test_clear_and_replace():
    cache = PasswordCache()
    cache.store('first')
    cache.store('second')
    assert cache.get() == 'second'

    cache.clear()
    assert cache.get() is None


def test_separate_caches_use_separate_keys():
    first = PasswordCache()
    second = PasswordCache()
    first.store('hunter2')

    second._token = first._token
    assert second.get() is None
