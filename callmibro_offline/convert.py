from io import BytesIO
from typing import Optional

import requests
from requests.structures import CaseInsensitiveDict
from requests.utils import get_encoding_from_headers

from .model import Request, Response


def request_from_prepared(prepared: requests.PreparedRequest) -> Request:
    return Request(method=(prepared.method or 'GET').upper(),
                   uri=prepared.url,
                   headers=CaseInsensitiveDict(prepared.headers))


def response_from_requests(requests_response: requests.Response) -> Response:
    """
    Take a buffered copy of a live response.

    Reading `content` drains the underlying stream, but `requests` keeps the
    bytes around, so the live response stays usable for the caller.
    """
    return Response(status=requests_response.status_code,
                    reason=requests_response.reason,
                    headers=dict(requests_response.headers),
                    body=requests_response.content)


def response_to_requests(response: Response, url: str,
                         prepared: Optional[requests.PreparedRequest] = None) -> requests.Response:
    result = requests.Response()
    result.status_code = response.status
    result.reason = response.reason
    result.headers = CaseInsensitiveDict(response.headers)
    result.encoding = get_encoding_from_headers(result.headers)
    result.raw = BytesIO(response.body)
    result._content = response.body
    result._content_consumed = True
    result.url = url
    result.request = prepared
    return result
