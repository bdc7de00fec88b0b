"""
Document store used by the signal bridge.

The bridge only needs a small slice of a document database: get a document by
id, query a collection by field equality, atomic multi-document batches, and
a conditional update for state machine transitions. :class:`DocumentStore`
is that interface; :class:`RedisDocumentStore` implements it on redis.asyncio.

Atomicity:
    Batches and conditional updates use WATCH/MULTI/EXEC. The documents being
    written are WATCHed, read and validated, then the writes (document body
    plus index membership) are queued inside MULTI. If any watched key changes
    before EXEC, Redis aborts the transaction with ``WatchError`` and the
    operation is retried from the read. A conditional update therefore either
    observes the expected field values and applies, or reports that it did not.

Example:
    >>> store = RedisDocumentStore(redis, collections=BRIDGE_COLLECTIONS)
    >>> claimed = await store.update_if(
    ...     "commands", "cmd_1", expected={"status": "pending"},
    ...     fields={"status": "processing"},
    ... )
    >>> claimed is None  # someone else claimed it first
    False

See Also:
    - libs/document_store/keys.py for the key layout
    - libs/document_store/collections.py for the indexed fields
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

import redis.asyncio as redis_async
from redis.exceptions import RedisError, WatchError

from libs.common.exceptions import StoreError
from libs.document_store.collections import CollectionSpec
from libs.document_store.keys import StoreKeys

logger = logging.getLogger(__name__)

Document = dict[str, Any]
Mutation = Callable[[Document], Document | None]

_SCORE_FIELD = "_ts"


@dataclass(frozen=True)
class WriteOp:
    """One queued write inside a :class:`WriteBatch`."""

    kind: Literal["create", "set", "update"]
    collection: str
    doc_id: str
    fields: Document
    expected: Document = field(default_factory=dict)


@dataclass
class WriteBatch:
    """
    Ordered group of writes committed all-or-nothing.

    ``create`` fails the whole batch if the document exists, ``update`` fails
    it if the document is missing or any ``expected`` value differs, ``set``
    writes unconditionally.
    """

    ops: list[WriteOp] = field(default_factory=list)

    def create(self, collection: str, doc_id: str, document: Mapping[str, Any]) -> WriteBatch:
        self.ops.append(WriteOp("create", collection, doc_id, dict(document)))
        return self

    def set(self, collection: str, doc_id: str, document: Mapping[str, Any]) -> WriteBatch:
        self.ops.append(WriteOp("set", collection, doc_id, dict(document)))
        return self

    def update(
        self,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
        expected: Mapping[str, Any] | None = None,
    ) -> WriteBatch:
        self.ops.append(WriteOp("update", collection, doc_id, dict(fields), dict(expected or {})))
        return self

    def __len__(self) -> int:
        return len(self.ops)


class DocumentStore(ABC):
    """Narrow document database interface the bridge is written against."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        """Return the document or None if it does not exist."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        """Return documents whose fields equal ``filters``, oldest first."""

    @abstractmethod
    async def commit(self, batch: WriteBatch) -> None:
        """Apply every write in ``batch`` atomically, or none of them.

        Raises:
            StoreError: If a precondition fails or the store rejects the batch
        """

    @abstractmethod
    async def modify(self, collection: str, doc_id: str, mutate: Mutation) -> Document | None:
        """Optimistic read-modify-write.

        ``mutate`` receives the current document and returns the replacement,
        or None to leave it unchanged. It may be called more than once under
        contention and must not have side effects.

        Returns:
            The document as stored after the call, or None if it does not exist
        """

    @abstractmethod
    async def update_if(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> Document | None:
        """Compare-and-set: merge ``fields`` only if every ``expected`` value matches.

        Returns:
            The updated document, or None if the document is missing or any
            expected value did not match at commit time
        """

    @abstractmethod
    async def create_if_absent(
        self, collection: str, doc_id: str, document: Mapping[str, Any]
    ) -> Document:
        """Create the document unless it exists; return whichever is stored."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the backing store is reachable."""

    async def close(self) -> None:
        """Release connections."""
        return None

    def batch(self) -> WriteBatch:
        return WriteBatch()

    async def insert(
        self, collection: str, document: Mapping[str, Any], doc_id: str | None = None
    ) -> str:
        """Create a document, generating an id when none is given.

        Raises:
            StoreError: If a document with ``doc_id`` already exists
        """
        doc_id = doc_id or uuid.uuid4().hex
        await self.commit(self.batch().create(collection, doc_id, document))
        return doc_id

    async def update(
        self, collection: str, doc_id: str, fields: Mapping[str, Any]
    ) -> Document | None:
        """Merge ``fields`` into an existing document. None if it does not exist."""
        return await self.update_if(collection, doc_id, {}, fields)


def _public(document: Document) -> Document:
    return {key: value for key, value in document.items() if not key.startswith("_")}


class RedisDocumentStore(DocumentStore):
    """
    :class:`DocumentStore` on Redis.

    Documents are JSON strings. Every document id is also a member of its
    collection's sorted set and of one sorted set per configured index, all
    scored by creation time so reads come back oldest first.

    Args:
        redis: Async Redis client created with ``decode_responses=True``
        collections: Index configuration; unknown collections have no indexes
        namespace: Prefix for every key
        max_watch_retries: Conflicting transactions tolerated before giving up
    """

    def __init__(
        self,
        redis: redis_async.Redis,
        collections: Iterable[CollectionSpec] = (),
        namespace: str = "bridge",
        max_watch_retries: int = 50,
    ) -> None:
        self._redis = redis
        self._specs = {spec.name: spec for spec in collections}
        self._namespace = namespace
        self._max_watch_retries = max_watch_retries
        self._last_score = 0

    @property
    def redis(self) -> redis_async.Redis:
        return self._redis

    # ------------------------------------------------------------------
    # Key and encoding helpers
    # ------------------------------------------------------------------

    def _spec(self, collection: str) -> CollectionSpec:
        return self._specs.get(collection) or CollectionSpec(collection)

    def _doc_key(self, collection: str, doc_id: str) -> str:
        return StoreKeys.document(self._namespace, collection, doc_id)

    def _index_keys(self, spec: CollectionSpec, document: Document) -> set[str]:
        return {
            StoreKeys.index(self._namespace, spec.name, {f: document.get(f) for f in fields})
            for fields in spec.indexes
        }

    def _next_score(self) -> int:
        # Microseconds, strictly increasing within this process.
        score = max(time.time_ns() // 1000, self._last_score + 1)
        self._last_score = score
        return score

    @staticmethod
    def _load(raw: str | None) -> Document | None:
        if raw is None:
            return None
        document: Document = json.loads(raw)
        return document

    def _prepare(self, doc_id: str, new: Document, old: Document | None) -> Document:
        prepared = dict(new)
        prepared["id"] = doc_id
        if old is not None and _SCORE_FIELD in old:
            prepared[_SCORE_FIELD] = old[_SCORE_FIELD]
        else:
            prepared[_SCORE_FIELD] = self._next_score()
        return prepared

    def _queue_write(
        self,
        pipe: Any,
        spec: CollectionSpec,
        doc_id: str,
        new: Document,
        old: Document | None,
    ) -> None:
        """Queue the document body and index moves on a pipeline in MULTI mode."""
        score = new[_SCORE_FIELD]
        pipe.set(self._doc_key(spec.name, doc_id), json.dumps(new, default=str))
        pipe.zadd(StoreKeys.collection(self._namespace, spec.name), {doc_id: score})

        new_indexes = self._index_keys(spec, new)
        old_indexes = self._index_keys(spec, old) if old is not None else set()
        for key in old_indexes - new_indexes:
            pipe.zrem(key, doc_id)
        for key in new_indexes:
            pipe.zadd(key, {doc_id: score})

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> Document | None:
        try:
            raw = await self._redis.get(self._doc_key(collection, doc_id))
        except RedisError as e:
            logger.error(f"Store GET failed for {collection}/{doc_id}: {e}")
            raise StoreError(f"Failed to read {collection}/{doc_id}: {e}") from e

        document = self._load(raw)
        return _public(document) if document is not None else None

    async def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        spec = self._spec(collection)
        filters = dict(filters or {})

        source = StoreKeys.collection(self._namespace, collection)
        if filters:
            for fields in spec.indexes:
                if set(fields) == set(filters):
                    source = StoreKeys.index(self._namespace, collection, filters)
                    break
            else:
                logger.debug(
                    f"No index on {collection} for {sorted(filters)}, scanning collection"
                )

        try:
            doc_ids = await self._redis.zrange(source, 0, -1)
            if not doc_ids:
                return []
            raws = await self._redis.mget([self._doc_key(collection, i) for i in doc_ids])
        except RedisError as e:
            logger.error(f"Store query failed for {collection}: {e}")
            raise StoreError(f"Failed to query {collection}: {e}") from e

        results: list[Document] = []
        for raw in raws:
            document = self._load(raw)
            if document is None:
                continue
            # Index membership is advisory; the document body decides.
            if all(document.get(name) == value for name, value in filters.items()):
                results.append(_public(document))
                if limit is not None and len(results) >= limit:
                    break
        return results

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.warning(f"Store health check failed: {e}")
            return False

    async def close(self) -> None:
        await self._redis.aclose()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def commit(self, batch: WriteBatch) -> None:
        if not batch.ops:
            return

        keys = list(dict.fromkeys(self._doc_key(op.collection, op.doc_id) for op in batch.ops))

        for _ in range(self._max_watch_retries):
            try:
                async with self._redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(*keys)
                    raws = await pipe.mget(keys)
                    current = {key: self._load(raw) for key, raw in zip(keys, raws, strict=True)}

                    writes: list[tuple[CollectionSpec, str, Document, Document | None]] = []
                    for op in batch.ops:
                        key = self._doc_key(op.collection, op.doc_id)
                        old = current[key]
                        if op.kind == "create" and old is not None:
                            await pipe.unwatch()
                            raise StoreError(f"Document {op.collection}/{op.doc_id} already exists")
                        if op.kind == "update" and old is None:
                            await pipe.unwatch()
                            raise StoreError(f"Document {op.collection}/{op.doc_id} does not exist")
                        if old is not None and any(
                            old.get(name) != value for name, value in op.expected.items()
                        ):
                            await pipe.unwatch()
                            raise StoreError(
                                f"Precondition failed for {op.collection}/{op.doc_id}: "
                                f"expected {op.expected}"
                            )

                        body = {**old, **op.fields} if op.kind == "update" and old else op.fields
                        new = self._prepare(op.doc_id, body, old)
                        writes.append((self._spec(op.collection), op.doc_id, new, old))
                        current[key] = new

                    pipe.multi()
                    for spec, doc_id, new, old in writes:
                        self._queue_write(pipe, spec, doc_id, new, old)
                    await pipe.execute()

                logger.debug(f"Committed batch of {len(batch)} writes")
                return
            except WatchError:
                logger.warning("WatchError on batch commit, retrying transaction")
                continue
            except RedisError as e:
                logger.error(f"Store batch commit failed: {e}")
                raise StoreError(f"Batch commit failed: {e}") from e

        raise StoreError(f"Batch commit abandoned after {self._max_watch_retries} conflicts")

    async def _rewrite(
        self, collection: str, doc_id: str, mutate: Mutation
    ) -> tuple[Document | None, bool]:
        """WATCH one document, apply ``mutate`` and write it back.

        Returns:
            (document after the call, whether a write happened)
        """
        spec = self._spec(collection)
        key = self._doc_key(collection, doc_id)

        for _ in range(self._max_watch_retries):
            try:
                async with self._redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    old = self._load(await pipe.get(key))
                    if old is None:
                        await pipe.unwatch()
                        return None, False

                    replacement = mutate(_public(old))
                    if replacement is None:
                        await pipe.unwatch()
                        return _public(old), False

                    new = self._prepare(doc_id, replacement, old)
                    pipe.multi()
                    self._queue_write(pipe, spec, doc_id, new, old)
                    await pipe.execute()
                    return _public(new), True
            except WatchError:
                logger.warning(f"WatchError on {collection}/{doc_id}, retrying transaction")
                continue
            except RedisError as e:
                logger.error(f"Store update failed for {collection}/{doc_id}: {e}")
                raise StoreError(f"Failed to update {collection}/{doc_id}: {e}") from e

        raise StoreError(
            f"Update of {collection}/{doc_id} abandoned after {self._max_watch_retries} conflicts"
        )

    async def modify(self, collection: str, doc_id: str, mutate: Mutation) -> Document | None:
        document, _ = await self._rewrite(collection, doc_id, mutate)
        return document

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> Document | None:
        def apply(current: Document) -> Document | None:
            if any(current.get(name) != value for name, value in expected.items()):
                return None
            return {**current, **fields}

        document, applied = await self._rewrite(collection, doc_id, apply)
        return document if applied else None

    async def create_if_absent(
        self, collection: str, doc_id: str, document: Mapping[str, Any]
    ) -> Document:
        spec = self._spec(collection)
        key = self._doc_key(collection, doc_id)

        for _ in range(self._max_watch_retries):
            try:
                async with self._redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    existing = self._load(await pipe.get(key))
                    if existing is not None:
                        await pipe.unwatch()
                        return _public(existing)

                    new = self._prepare(doc_id, dict(document), None)
                    pipe.multi()
                    self._queue_write(pipe, spec, doc_id, new, None)
                    await pipe.execute()
                    return _public(new)
            except WatchError:
                logger.warning(f"WatchError creating {collection}/{doc_id}, retrying transaction")
                continue
            except RedisError as e:
                logger.error(f"Store create failed for {collection}/{doc_id}: {e}")
                raise StoreError(f"Failed to create {collection}/{doc_id}: {e}") from e

        raise StoreError(
            f"Create of {collection}/{doc_id} abandoned after {self._max_watch_retries} conflicts"
        )


__all__ = [
    "Document",
    "DocumentStore",
    "Mutation",
    "RedisDocumentStore",
    "WriteBatch",
    "WriteOp",
]
