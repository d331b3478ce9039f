from ddt import ddt, data, unpack
from unittest import TestCase

from requests.structures import CaseInsensitiveDict

from callmibro_offline import util


@ddt
class TestClamp(TestCase):
    @data(
        (-1, 0, 3, 0),
        (0, 0, 3, 0),
        (1, 0, 3, 1),
        (2, 0, 3, 2),
        (3, 0, 3, 3),
        (4, 0, 3, 3),

        (0, -10, 10, 0),
        (-11, -10, 10, -10),
        (11, -10, 10, 10),
    )
    @unpack
    def test_clamp(self, value, min, max, expected):
        actual = util.clamp(value, min, max)
        self.assertEqual(expected, actual, 'The value should be clamped properly')


@ddt
class TestOrigin(TestCase):
    @data(
        ('https://callmibro.com/api/services?page=2', 'https://callmibro.com'),
        ('https://CallMiBro.com:443/', 'https://callmibro.com'),
        ('http://localhost:3000/brands', 'http://localhost:3000'),
        ('http://localhost:80/', 'http://localhost'),
        ('https://cdn.example.com/lib.js', 'https://cdn.example.com'),
    )
    @unpack
    def test_origin_of(self, url, expected):
        self.assertEqual(expected, util.origin_of(url))


@ddt
class TestCacheKey(TestCase):
    @data(
        ('https://callmibro.com/faq#pricing', 'https://callmibro.com/faq'),
        ('https://callmibro.com/api/spare-parts?brand=lg', 'https://callmibro.com/api/spare-parts?brand=lg'),
        ('https://callmibro.com/', 'https://callmibro.com/'),
    )
    @unpack
    def test_cache_key(self, url, expected):
        self.assertEqual(expected, util.cache_key(url))


@ddt
class TestHelpers(TestCase):
    def test_bucket_name(self):
        self.assertEqual('callmibro-cache-v1', util.bucket_name('callmibro', 1))

    @data(
        (199, False),
        (200, True),
        (201, True),
        (204, True),
        (299, True),
        (304, False),
        (404, False),
        (500, False),
    )
    @unpack
    def test_is_success(self, status, expected):
        self.assertEqual(expected, util.is_success(status))

    @data(
        ({}, []),
        ({'Vary': ''}, []),
        ({'Vary': 'Accept'}, ['Accept']),
        ({'Vary': 'Accept, Accept-Language'}, ['Accept', 'Accept-Language']),
        ({'vary': '*'}, ['*']),
    )
    @unpack
    def test_vary_headers(self, headers, expected):
        self.assertEqual(expected, util.vary_headers(CaseInsensitiveDict(headers)))
