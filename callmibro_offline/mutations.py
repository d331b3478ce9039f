from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urljoin

import requests

from .model import MutationKind, PendingMutation
from .util import is_success


logger = logging.getLogger(__name__)


JSON_HEADERS = {'Content-Type': 'application/json'}

_SCHEMA = """
CREATE TABLE IF NOT EXISTS entries (
    partition_name TEXT NOT NULL,
    id TEXT NOT NULL,
    value TEXT NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    PRIMARY KEY (partition_name, id)
);
"""


class KeyValueStore:
    """
    An embedded key-value store on top of SQLite.

    Values are JSON documents grouped into named partitions and keyed by id within a partition. Each entry also
    carries a failure counter and the last failure message, which only exist for diagnostics.

    One connection is shared by every thread, so all access goes through a lock.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.__connection = sqlite3.connect(str(path), check_same_thread=False)
        self.__connection.row_factory = sqlite3.Row
        self.__lock = threading.Lock()
        with self.__lock:
            self.__connection.executescript(_SCHEMA)

    def put(self, partition: str, id: str, value: Any) -> None:
        """
        Insert or replace the value stored under `id`, keeping its failure history.
        """
        with self.__lock, self.__connection:
            self.__connection.execute(
                'INSERT INTO entries (partition_name, id, value) VALUES (?, ?, ?) '
                'ON CONFLICT (partition_name, id) DO UPDATE SET value = excluded.value',
                (partition, id, json.dumps(value)))

    def get(self, partition: str, id: str) -> Optional[Dict[str, Any]]:
        with self.__lock:
            row = self.__connection.execute(
                'SELECT id, value, attempts, last_error FROM entries WHERE partition_name = ? AND id = ?',
                (partition, id)).fetchone()
        return None if row is None else self._to_dict(row)

    def get_all(self, partition: str) -> List[Dict[str, Any]]:
        """
        Every entry of `partition`, oldest first.
        """
        with self.__lock:
            rows = self.__connection.execute(
                'SELECT id, value, attempts, last_error FROM entries WHERE partition_name = ? ORDER BY rowid',
                (partition,)).fetchall()
        return [self._to_dict(row) for row in rows]

    def delete(self, partition: str, id: str) -> bool:
        with self.__lock, self.__connection:
            cursor = self.__connection.execute(
                'DELETE FROM entries WHERE partition_name = ? AND id = ?', (partition, id))
        return cursor.rowcount > 0

    def record_failure(self, partition: str, id: str, error: str) -> None:
        with self.__lock, self.__connection:
            self.__connection.execute(
                'UPDATE entries SET attempts = attempts + 1, last_error = ? WHERE partition_name = ? AND id = ?',
                (error, partition, id))

    def close(self) -> None:
        with self.__lock:
            self.__connection.close()

    @staticmethod
    def _to_dict(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            'id': row['id'],
            'value': json.loads(row['value']),
            'attempts': row['attempts'],
            'last_error': row['last_error'],
        }


@dataclass
class FlushResult:
    kind: MutationKind
    delivered: List[str] = field(default_factory=list)
    """
    Ids the server acknowledged. They are gone from the queue.
    """
    failed: List[str] = field(default_factory=list)
    """
    Ids that could not be delivered. They stay queued for the next sync.
    """


class MutationQueue:
    """
    Durable staging for bookings and orders that could not reach the server.

    An entry stays queued until the server answers its POST with a 2xx status. There is no retry limit: an entry
    the server keeps rejecting is retried on every sync.
    """

    def __init__(self, store: KeyValueStore, network: requests.Session, origin: str) -> None:
        self.__store = store
        self.__network = network
        self.__origin = origin
        self.__locks = {kind: threading.Lock() for kind in MutationKind}

    def enqueue(self, kind: MutationKind, id: str, payload: Any) -> PendingMutation:
        logger.info('Queueing {} {} for background sync'.format(kind.value, id))
        self.__store.put(kind.partition, id, payload)
        return self._to_mutation(kind, self.__store.get(kind.partition, id))

    def pending(self, kind: MutationKind) -> List[PendingMutation]:
        return [self._to_mutation(kind, entry) for entry in self.__store.get_all(kind.partition)]

    def flush(self, kind: MutationKind) -> FlushResult:
        """
        Try to deliver every queued mutation of `kind`.

        Each entry is posted on its own, one after the other. A failure only affects that entry. Two flushes of the
        same kind never overlap, so an entry is never posted twice at once.
        """
        url = urljoin(self.__origin, kind.endpoint)
        result = FlushResult(kind)
        with self.__locks[kind]:
            mutations = self.pending(kind)
            logger.info('Syncing {} queued {} submissions to {}'.format(len(mutations), kind.value, url))
            for mutation in mutations:
                try:
                    response = self.__network.post(url, json=mutation.payload, headers=JSON_HEADERS)
                except requests.RequestException as e:
                    self._record_failure(result, mutation, str(e))
                    continue

                if is_success(response.status_code):
                    logger.info('Delivered {} {}'.format(kind.value, mutation.id))
                    self.__store.delete(kind.partition, mutation.id)
                    result.delivered.append(mutation.id)
                else:
                    self._record_failure(result, mutation,
                                         'HTTP {} {}'.format(response.status_code, response.reason or '').strip())
        return result

    def handle_sync(self, tag: str) -> Optional[FlushResult]:
        kind = MutationKind.from_sync_tag(tag)
        if kind is None:
            logger.warning('Ignoring background sync with unknown tag {}'.format(tag))
            return None
        return self.flush(kind)

    def _record_failure(self, result: FlushResult, mutation: PendingMutation, error: str) -> None:
        logger.error('Failed to sync {} {}: {}'.format(mutation.kind.value, mutation.id, error))
        self.__store.record_failure(mutation.kind.partition, mutation.id, error)
        result.failed.append(mutation.id)

    @staticmethod
    def _to_mutation(kind: MutationKind, entry: Dict[str, Any]) -> PendingMutation:
        return PendingMutation(id=entry['id'],
                               kind=kind,
                               payload=entry['value'],
                               attempts=entry['attempts'],
                               last_error=entry['last_error'])
