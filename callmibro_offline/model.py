"""
Defines types to use in the offline interface.

These types are as simple as possible in order to most conveniently consume and
produce instances of them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional


@dataclass
class Request:
    """
    Represents an arbitrary request, excluding parts not used for caching.

    The body and the HTTP version do not affect caching, and so we exclude
    them.
    """

    method: str
    """
    The HTTP method of the request. E.g., "GET".
    """

    uri: str
    """
    The absolute URL of the resource being requested.
    """

    headers: Mapping[str, str]
    """
    All the headers being sent with the request.
    """


@dataclass
class Response:
    """
    Represents an arbitrary response, without any bells and whistles.

    `requests` hands out bodies as streams that can only be read once. We
    always hold a buffered copy of the bytes instead, so the same response can
    be stored and still be returned to the caller.
    """

    status: int
    """
    The status code of the response. E.g., 200 or 404.
    """

    reason: str
    """
    The reason string, which relates to the status code.
    """

    headers: Mapping[str, str]
    """
    All the headers sent with the response.
    """

    body: bytes = field(default=b'', compare=False)
    """
    The complete response payload.
    """


@dataclass
class CacheEntry:
    request: Request
    response: Response


class RequestPolicy(Enum):
    """
    How the fetch interceptor treats a request.
    """

    SAME_ORIGIN = 'same-origin-navigable'
    API_ROUTE = 'api-route'
    CROSS_ORIGIN = 'cross-origin'


_PARTITIONS = {
    'booking': 'offline-bookings',
    'order': 'offline-orders',
}

_ENDPOINTS = {
    'booking': '/api/bookings',
    'order': '/api/orders',
}

_SYNC_TAGS = {
    'booking': 'booking-sync',
    'order': 'order-sync',
}


class MutationKind(Enum):
    BOOKING = 'booking'
    ORDER = 'order'

    @property
    def partition(self) -> str:
        """
        The key-value partition holding queued mutations of this kind.
        """
        return _PARTITIONS[self.value]

    @property
    def endpoint(self) -> str:
        """
        The path that accepts submissions of this kind.
        """
        return _ENDPOINTS[self.value]

    @property
    def sync_tag(self) -> str:
        """
        The background sync tag that triggers a flush of this kind.
        """
        return _SYNC_TAGS[self.value]

    @classmethod
    def from_sync_tag(cls, tag: str) -> Optional['MutationKind']:
        for kind in cls:
            if kind.sync_tag == tag:
                return kind
        return None


@dataclass
class PendingMutation:
    """
    A queued write that the server has not acknowledged yet.
    """

    id: str
    kind: MutationKind
    payload: Any
    attempts: int = 0
    """
    How many delivery attempts have failed so far.
    """
    last_error: Optional[str] = None
    """
    A description of the most recent delivery failure, for diagnostics.
    """
