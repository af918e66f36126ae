"""
Tests for CacheService.
"""
from unittest.mock import patch

from apps.core.cache import CacheKeys, CacheService


class TestCacheService:

    def test_set_get_delete(self):
        key = CacheKeys.format(CacheKeys.EFFECTIVE_ACCESS, user_id='u1')
        assert key == 'authz:effective:u1'

        assert CacheService.set(key, {'view': 1}, 60) is True
        assert CacheService.get(key) == {'view': 1}

        CacheService.delete_many([key])
        assert CacheService.get(key, default='missing') == 'missing'

    def test_backend_errors_are_misses(self):
        with patch('apps.core.cache.cache') as backend:
            backend.get.side_effect = ConnectionError('redis down')
            assert CacheService.get('k', default='fallback') == 'fallback'

    def test_backend_write_errors_return_false(self):
        with patch('apps.core.cache.cache') as backend:
            backend.set.side_effect = ConnectionError('redis down')
            backend.delete.side_effect = ConnectionError('redis down')
            assert CacheService.set('k', 1, 60) is False
            assert CacheService.delete('k') is False

    def test_delete_many_with_no_keys(self):
        assert CacheService.delete_many([]) is True
