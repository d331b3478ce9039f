from abc import ABC, abstractmethod
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
import hashlib
import json
import logging
import os
from pathlib import Path
import shutil
import tempfile
import threading
from typing import Dict, Iterable, List, Mapping, Optional
from urllib.parse import urljoin

import requests
from requests.structures import CaseInsensitiveDict

from .convert import request_from_prepared, response_from_requests
from .model import CacheEntry, Request, Response
from .util import cache_key, clamp, is_success, vary_headers


logger = logging.getLogger(__name__)


class Bucket(ABC):
    """
    An abstraction of a named response cache.

    A bucket has a relatively narrow scope: to remember a response such that it can be recalled later for a
    matching request. Entries never expire one at a time. A bucket is only ever thrown away as a whole, when the
    version it belongs to is retired.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        The name of the bucket, e.g. "callmibro-cache-v1".
        """

    @abstractmethod
    def get(self, request: Request) -> Optional[CacheEntry]:
        """
        Retrieve a cached response matching `request`.

        @param request
          The request to look up in the bucket.
        @return
          A cached entry for `request`, or `None` if there is none.
        """

    @abstractmethod
    def put(self, request: Request, response: Response) -> Optional[CacheEntry]:
        """
        Add a response to the bucket, replacing any entry already stored for the same URL.

        @param request
          The request for which a response should be cached.
        @param response
          The response to cache.
        @return
          The cached entry, or `None` if the bucket refused to cache the response.
        """

    @abstractmethod
    def uris(self) -> List[str]:
        """
        The URLs of every entry in the bucket.
        """


class CacheStorage(ABC):
    """
    The collection of every bucket the application has ever created.
    """

    @abstractmethod
    def open(self, name: str) -> Bucket:
        """
        Open the bucket called `name`, creating it if it does not exist yet.
        """

    @abstractmethod
    def keys(self) -> List[str]:
        """
        The names of all existing buckets.
        """

    @abstractmethod
    def delete(self, name: str) -> bool:
        """
        Delete a bucket and all of its entries.

        @return
          Whether a bucket called `name` existed.
        """

    def close(self):
        """
        Close any resources associated with the storage.
        """


class HttpAwareBucket(Bucket):
    """
    Augments a bucket with HTTP-specific knowledge.

    - Only GET requests are ever matched or stored.
    - Only 200 responses are stored, so errors never poison the bucket.
    - An entry only matches a request whose headers agree on everything listed in the entry's Vary header.
    """

    def __init__(self, implementation: Bucket) -> None:
        self.__impl = implementation

    @property
    def name(self) -> str:
        return self.__impl.name

    def get(self, request: Request) -> Optional[CacheEntry]:
        if not self._is_cachable_method(request.method):
            logger.info('Method {} is never served from the cache'.format(request.method))
            return None

        logger.info('Delegating cache lookup to decorated bucket.')
        entry = self.__impl.get(request)
        if entry is None:
            logger.info('Decorated bucket did not find a matching cache entry.')
            return None

        # region Only match if all specific Vary headers match.
        cached_headers = CaseInsensitiveDict(entry.request.headers)
        incoming_headers = CaseInsensitiveDict(request.headers)
        for key in vary_headers(CaseInsensitiveDict(entry.response.headers)):
            if key == '*':
                logger.info('Cache entry is rejected because it varies on everything.')
                return None
            if cached_headers.get(key) != incoming_headers.get(key):
                logger.info('Cache entry is rejected because the value for a Vary header is not equal to the value in '
                            'the original request. Header: {}. Expected value: {}. Actual value: {}'
                            .format(key, cached_headers.get(key), incoming_headers.get(key)))
                return None
        # endregion

        logger.info('Cache entry passed all HTTP checks. Returning entry from cache.')
        return entry

    def put(self, request: Request, response: Response) -> Optional[CacheEntry]:
        if not self._is_cachable_status_code(response.status):
            logger.info('Refusing to create cache entry. Status code {} is not cachable.'.format(response.status))
            return None
        if not self._is_cachable_method(request.method):
            logger.info('Refusing to create cache entry. Method {} is not cachable.'.format(request.method))
            return None

        logger.info('Delegating cache entry creation to decorated bucket.')
        return self.__impl.put(request, response)

    def uris(self) -> List[str]:
        return self.__impl.uris()

    def accepts(self, method: str, status: int) -> bool:
        return self._is_cachable_method(method) and self._is_cachable_status_code(status)

    def _is_cachable_status_code(self, status: int) -> bool:
        return status == 200

    def _is_cachable_method(self, method: str) -> bool:
        return method.upper() == 'GET'


class MemoryBucket(Bucket):
    def __init__(self, name: str) -> None:
        self.__name = name
        self.__entries = {}  # type: Dict[str, CacheEntry]
        self.__lock = threading.Lock()

    @property
    def name(self) -> str:
        return self.__name

    def get(self, request: Request) -> Optional[CacheEntry]:
        with self.__lock:
            return self.__entries.get(cache_key(request.uri))

    def put(self, request: Request, response: Response) -> CacheEntry:
        entry = CacheEntry(request, response)
        with self.__lock:
            self.__entries[cache_key(request.uri)] = entry
        return entry

    def uris(self) -> List[str]:
        with self.__lock:
            return sorted(self.__entries)


class MemoryCacheStorage(CacheStorage):
    def __init__(self) -> None:
        self.__buckets = {}  # type: Dict[str, MemoryBucket]
        self.__lock = threading.Lock()

    def open(self, name: str) -> Bucket:
        with self.__lock:
            if name not in self.__buckets:
                logger.info('Creating in-memory bucket {}'.format(name))
                self.__buckets[name] = MemoryBucket(name)
            return self.__buckets[name]

    def keys(self) -> List[str]:
        with self.__lock:
            return sorted(self.__buckets)

    def delete(self, name: str) -> bool:
        with self.__lock:
            return self.__buckets.pop(name, None) is not None


@dataclass
class FileCacheResponseModel:
    status: int
    reason: str
    headers: Mapping[str, str]
    body_path: Path


@dataclass
class FileCacheEntryModel:
    entry_path: Path
    request: Request
    response: FileCacheResponseModel


class CorruptEntry(Exception):
    def __init__(self, entry_path: Path):
        super().__init__()
        self.__entry_path = entry_path

    @property
    def entry_path(self) -> Path:
        return self.__entry_path


class FileBucket(Bucket):
    """
    A bucket kept in a directory.

    Entries are small JSON files under `entries/`, found by hashing the request URL. Bodies live under `bodies/` at
    a random path the entry points to. Both are written to a temporary file first and then moved into place, so a
    reader never sees a half-written file.
    """

    def __init__(self, directory: Path, cache_directory_levels: int) -> None:
        """
        Initialize the file bucket.

        @param directory
          The path to the root directory of the bucket. Its last component is the bucket name.
        @param cache_directory_levels
          The number of subdirectory levels to use in the bucket directory. This
          will be clamped to be between 0 and 20, respectively.
        """
        self.__directory = directory
        self.__entry_directory = directory / 'entries'
        self.__body_directory = directory / 'bodies'
        self.__cache_directory_levels = clamp(cache_directory_levels, 0, 20)

    @property
    def name(self) -> str:
        return self.__directory.name

    def _get_path(self, uri: str) -> Path:
        hashed = hashlib.sha256(cache_key(uri).encode('utf-8')).hexdigest()
        return self._split_path(hashed)

    def _split_path(self, path: str) -> Path:
        subdirectories = (list(path[:self.__cache_directory_levels])
                          + [path[self.__cache_directory_levels:]])
        return Path(*subdirectories)

    def _read_entry(self, entry_path: Path) -> FileCacheEntryModel:
        """
        Read a cache entry from a file.

        @throws FileNotFoundError
            If there is no entry file at `entry_path`.
        @throws CorruptEntry
            If the entry file could not be parsed.
        """
        try:
            with open(entry_path, 'r') as f:
                entry = json.load(f)
            return FileCacheEntryModel(entry_path=entry_path,
                                       request=Request(
                                           method=entry['request']['method'],
                                           uri=entry['request']['uri'],
                                           headers=entry['request']['headers']
                                       ),
                                       response=FileCacheResponseModel(
                                           status=entry['response']['status'],
                                           reason=entry['response']['reason'],
                                           headers=entry['response']['headers'],
                                           body_path=self.__body_directory / Path(entry['response']['body'])))
        except (KeyError, TypeError, json.JSONDecodeError):
            raise CorruptEntry(entry_path)

    def _write_atomically(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(mode='wb', dir=str(self.__directory), delete=False) as f:
            f.write(data)
        os.replace(f.name, str(path))

    def get(self, request: Request) -> Optional[CacheEntry]:
        entry_path = self.__entry_directory / self._get_path(request.uri)
        try:
            logger.info('Looking at the file system for a cache entry matching the request.')
            entry_model = self._read_entry(entry_path)
            with open(entry_model.response.body_path, 'rb') as f:
                body = f.read()
        except CorruptEntry as e:
            logger.warning('Found a corrupt cache entry. Deleting the entry file.')
            e.entry_path.unlink()
            return None
        except FileNotFoundError:
            if entry_path.exists():
                logger.warning('Cache entry points to a missing body file. Deleting the entry file.')
                entry_path.unlink()
            else:
                logger.info('No matching cache entry found.')
            return None

        logger.info('Loaded entry file. Returning the cache entry')
        return CacheEntry(
            request=entry_model.request,
            response=Response(
                status=entry_model.response.status,
                reason=entry_model.response.reason,
                headers=entry_model.response.headers,
                body=body
            )
        )

    def put(self, request: Request, response: Response) -> CacheEntry:
        entry_path = self.__entry_directory / self._get_path(request.uri)

        previous_body_path = None
        try:
            previous_body_path = self._read_entry(entry_path).response.body_path
        except (FileNotFoundError, CorruptEntry):
            pass

        # A fresh random body path means a concurrent reader of the previous entry still finds its body.
        body_path = self.__body_directory / self._split_path(os.urandom(32).hex())

        serialized = {
            'request': {
                'method': request.method,
                'uri': request.uri,
                'headers': dict(request.headers),
            },
            'response': {
                'status': response.status,
                'reason': response.reason,
                'headers': dict(response.headers),
                'body': str(body_path.relative_to(self.__body_directory))
            }
        }

        logger.info('Writing body file {}'.format(body_path))
        self._write_atomically(body_path, response.body)
        logger.info('Writing entry file {}'.format(entry_path))
        self._write_atomically(entry_path, json.dumps(serialized).encode('utf-8'))

        if previous_body_path is not None:
            logger.info('Replaced an existing entry. Deleting its body file {}'.format(previous_body_path))
            try:
                previous_body_path.unlink()
            except FileNotFoundError:
                pass

        return CacheEntry(request, response)

    def uris(self) -> List[str]:
        if not self.__entry_directory.exists():
            return []
        result = []
        for path in self.__entry_directory.rglob('*'):
            if not path.is_file():
                continue
            try:
                result.append(self._read_entry(path).request.uri)
            except CorruptEntry:
                logger.warning('Skipping corrupt cache entry {}'.format(path))
        return sorted(result)


class FileCacheStorage(CacheStorage):
    """
    Keeps each bucket in its own subdirectory of `directory`.
    """

    def __init__(self, directory: Path, cache_directory_levels: int = 5) -> None:
        self.__directory = directory
        self.__cache_directory_levels = cache_directory_levels

    def open(self, name: str) -> Bucket:
        bucket_directory = self.__directory / name
        if not bucket_directory.exists():
            logger.info('Creating bucket directory {}'.format(bucket_directory))
        bucket_directory.mkdir(parents=True, exist_ok=True)
        return FileBucket(bucket_directory, self.__cache_directory_levels)

    def keys(self) -> List[str]:
        if not self.__directory.exists():
            return []
        return sorted(path.name for path in self.__directory.iterdir() if path.is_dir())

    def delete(self, name: str) -> bool:
        bucket_directory = self.__directory / name
        if not bucket_directory.is_dir():
            return False
        logger.info('Deleting bucket directory {}'.format(bucket_directory))
        shutil.rmtree(str(bucket_directory))
        return True


class CacheStoreManager:
    """
    Owns the one current bucket.

    Only the bucket called `name` is ever read from or written to. Every other bucket in `storage` belongs to a
    previous version and is deleted on activation.
    """

    def __init__(self, storage: CacheStorage, name: str, origin: str, executor: Optional[Executor] = None) -> None:
        self.__storage = storage
        self.__name = name
        self.__origin = origin
        self.__bucket = None  # type: Optional[HttpAwareBucket]
        self.__owns_executor = executor is None
        self.__executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix='cache-store')
        self.__pending = []  # type: List[Future]
        self.__lock = threading.Lock()

    @property
    def name(self) -> str:
        return self.__name

    def _bucket(self) -> HttpAwareBucket:
        if self.__bucket is None:
            self.__bucket = HttpAwareBucket(self.__storage.open(self.__name))
        return self.__bucket

    def initialize(self, manifest: Iterable[str], network: requests.Session) -> None:
        """
        Pre-cache every URL in `manifest`.

        Every URL is fetched before anything is written. If any of them fails, the original `requests` exception
        propagates and the bucket is left untouched.

        @param manifest
          Paths or URLs, resolved against the origin.
        @param network
          The session used to reach the network. It must not route back through the fetch interceptor.
        """
        fetched = []
        for path in manifest:
            url = urljoin(self.__origin, path)
            logger.info('Pre-caching {}'.format(url))
            requests_response = network.get(url)
            if not is_success(requests_response.status_code):
                raise requests.HTTPError('Pre-caching {} failed with status {}'
                                         .format(url, requests_response.status_code),
                                         response=requests_response)
            # Vary matching compares against the headers that were actually sent.
            sent = requests_response.request
            request = (request_from_prepared(sent) if sent is not None
                       else Request(method='GET', uri=url, headers={}))
            fetched.append((request, response_from_requests(requests_response)))

        bucket = self.__storage.open(self.__name)
        for request, response in fetched:
            bucket.put(request, response)
        logger.info('Pre-cached {} assets into {}'.format(len(fetched), self.__name))

    def activate_and_evict_stale(self) -> List[str]:
        """
        Delete every bucket except the current one.

        Failing to delete one bucket never stops the others from being deleted.

        @return
          The names of the buckets that were deleted.
        """
        deleted = []
        for name in self.__storage.keys():
            if name == self.__name:
                continue
            try:
                logger.info('Deleting old cache: {}'.format(name))
                if self.__storage.delete(name):
                    deleted.append(name)
            except Exception:
                logger.exception('Unexpected error occurred while deleting old cache {}'.format(name))
        return deleted

    def lookup(self, request: Request) -> Optional[Response]:
        entry = self._bucket().get(request)
        return None if entry is None else entry.response

    def is_cachable(self, request: Request, response_status: int) -> bool:
        return self._bucket().accepts(request.method, response_status)

    def store(self, request: Request, response: Response) -> Optional[CacheEntry]:
        return self._bucket().put(request, response)

    def store_later(self, request: Request, response: Response) -> Future:
        """
        Store a response without making the caller wait for the write.
        """
        future = self.__executor.submit(self.store, request, response)
        future.add_done_callback(self._log_failure)
        with self.__lock:
            self.__pending = [f for f in self.__pending if not f.done()]
            self.__pending.append(future)
        return future

    def _log_failure(self, future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.error('Failed to write to cache {}: {}'.format(self.__name, error))

    def wait(self) -> None:
        """
        Block until every write started by `store_later()` has finished.
        """
        with self.__lock:
            pending, self.__pending = self.__pending, []
        wait(pending)

    def cached_uris(self) -> List[str]:
        return self._bucket().uris()

    def close(self) -> None:
        self.wait()
        if self.__owns_executor:
            self.__executor.shutdown(wait=True)
        self.__storage.close()
