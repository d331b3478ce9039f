from typing import List, Mapping
from urllib.parse import urldefrag, urlsplit


_DEFAULT_PORTS = {'http': 80, 'https': 443}


def clamp(value, min, max):
    return sorted((min, value, max))[1]


def origin_of(url: str) -> str:
    """
    The scheme, host and (non-default) port of `url`, e.g. "https://callmibro.com".
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or '').lower()
    port = parts.port
    if port is None or _DEFAULT_PORTS.get(scheme) == port:
        return '{}://{}'.format(scheme, host)
    return '{}://{}:{}'.format(scheme, host, port)


def cache_key(url: str) -> str:
    # Fragments never reach the server, so they never distinguish responses.
    return urldefrag(url)[0]


def bucket_name(app: str, version: int) -> str:
    return '{}-cache-v{}'.format(app, version)


def is_success(status: int) -> bool:
    return 200 <= status < 300


def vary_headers(headers: Mapping[str, str]) -> List[str]:
    """
    The header names listed in the Vary header of a response, if any.
    """
    value = headers.get('Vary', '')
    return [name.strip() for name in value.split(',') if name.strip()]
