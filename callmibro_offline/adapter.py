import logging
from typing import Sequence
from urllib.parse import urljoin, urlsplit

import requests
from requests.adapters import BaseAdapter

from .cache import CacheStoreManager
from .convert import request_from_prepared, response_from_requests, response_to_requests
from .model import Request, RequestPolicy
from .util import origin_of


logger = logging.getLogger(__name__)


class OfflineHTTPAdapter(BaseAdapter):
    """
    Serves requests to the application origin from the cache or the network.

    API routes go to the network first and fall back to the cache. Everything else on the origin is served from
    the cache first and only fetched when missing. Requests to any other origin are passed straight through.
    """

    def __init__(self, store: CacheStoreManager, network: requests.Session, origin: str,
                 api_routes: Sequence[str]) -> None:
        """
        @param store
          The cache of the current version.
        @param network
          The session used to reach the network. It must not have this adapter mounted.
        @param origin
          The origin of the application, e.g. "https://callmibro.com".
        @param api_routes
          Path prefixes of the data endpoints that should always be fetched fresh when possible.
        """
        super().__init__()
        self.store = store
        self.network = network
        self.origin = origin_of(origin)
        self.api_routes = tuple(api_routes)

    def classify(self, request: Request) -> RequestPolicy:
        if origin_of(request.uri) != self.origin:
            return RequestPolicy.CROSS_ORIGIN
        path = urlsplit(request.uri).path or '/'
        if any(path.startswith(route) for route in self.api_routes):
            return RequestPolicy.API_ROUTE
        return RequestPolicy.SAME_ORIGIN

    def send(self, requests_request: requests.PreparedRequest, **kw) -> requests.Response:
        request = request_from_prepared(requests_request)
        policy = self.classify(request)
        logger.info('{} {} classified as {}'.format(request.method, request.uri, policy.value))

        if policy is RequestPolicy.CROSS_ORIGIN:
            return self.network.send(requests_request, **kw)
        if policy is RequestPolicy.API_ROUTE:
            return self._network_first(requests_request, request, **kw)
        return self._cache_first(requests_request, request, **kw)

    def _network_first(self, requests_request: requests.PreparedRequest, request: Request,
                       **kw) -> requests.Response:
        try:
            requests_response = self.network.send(requests_request, **kw)
        except requests.RequestException:
            logger.info('Network failed for {}. Trying the cache.'.format(request.uri))
            cached = self.store.lookup(request)
            if cached is None:
                logger.info('No cached fallback for {}'.format(request.uri))
                raise
            return response_to_requests(cached, request.uri, requests_request)

        self._store_later(request, requests_response)
        return requests_response

    def _cache_first(self, requests_request: requests.PreparedRequest, request: Request,
                     **kw) -> requests.Response:
        cached = self.store.lookup(request)
        if cached is not None:
            logger.info('Serving {} from the cache'.format(request.uri))
            return response_to_requests(cached, request.uri, requests_request)

        try:
            requests_response = self.network.send(requests_request, **kw)
        except requests.RequestException:
            if not self._is_navigation(request):
                raise
            logger.info('Network failed for navigation to {}. Serving the cached root page.'.format(request.uri))
            root = urljoin(self.origin, '/')
            fallback = self.store.lookup(Request(method='GET', uri=root, headers=request.headers))
            if fallback is None:
                raise
            return response_to_requests(fallback, root, requests_request)

        self._store_later(request, requests_response)
        return requests_response

    def _store_later(self, request: Request, requests_response: requests.Response) -> None:
        if not self.store.is_cachable(request, requests_response.status_code):
            logger.info('Not caching {} {} ({})'.format(request.method, request.uri, requests_response.status_code))
            return
        self.store.store_later(request, response_from_requests(requests_response))

    @staticmethod
    def _is_navigation(request: Request) -> bool:
        if request.headers.get('Sec-Fetch-Mode') == 'navigate':
            return True
        return request.method == 'GET' and 'text/html' in request.headers.get('Accept', '')

    def close(self) -> None:
        """
        Nothing to release. The store and the network session belong to whoever created them.
        """
