"""
Redis key formats for the document store.

Every key the store writes is built here so the layout can be inspected with
``redis-cli`` without reading the store code.

Usage:
    from libs.document_store.keys import StoreKeys

    key = StoreKeys.document("bridge", "commands", "cmd_abc")
    # Returns: "bridge:doc:commands:cmd_abc"

    key = StoreKeys.index("bridge", "commands", {"account_id": "acc-1", "status": "pending"})
    # Returns: "bridge:idx:commands:account_id=acc-1|status=pending"

Layout:
    - ``doc``   JSON string per document
    - ``coll``  sorted set of every id in a collection, scored by insert time
    - ``idx``   sorted set of ids matching one combination of field values,
                scored by insert time so range reads come back oldest first
"""

from collections.abc import Mapping
from typing import Any


def index_value(value: Any) -> str:
    """
    Render a field value the way it appears inside an index key.

    Booleans are lowercased so ``True`` and ``"true"`` address the same index.

    Examples:
        >>> index_value(True)
        'true'
        >>> index_value("pending")
        'pending'
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


class StoreKeys:
    """Static builders for document store keys."""

    @staticmethod
    def document(namespace: str, collection: str, doc_id: str) -> str:
        """
        Key holding one JSON document.

        Format: "{namespace}:doc:{collection}:{doc_id}"

        Examples:
            >>> StoreKeys.document("bridge", "accounts", "acc-1")
            'bridge:doc:accounts:acc-1'
        """
        return f"{namespace}:doc:{collection}:{doc_id}"

    @staticmethod
    def collection(namespace: str, collection: str) -> str:
        """
        Sorted set of every document id in a collection.

        Format: "{namespace}:coll:{collection}"

        Examples:
            >>> StoreKeys.collection("bridge", "signals")
            'bridge:coll:signals'
        """
        return f"{namespace}:coll:{collection}"

    @staticmethod
    def index(namespace: str, collection: str, values: Mapping[str, Any]) -> str:
        """
        Sorted set of ids whose fields equal ``values``.

        Fields are sorted by name so the same filter always maps to the same key
        regardless of argument order.

        Format: "{namespace}:idx:{collection}:{field}={value}|..."

        Examples:
            >>> StoreKeys.index("bridge", "commands", {"status": "pending", "account_id": "a"})
            'bridge:idx:commands:account_id=a|status=pending'
        """
        parts = "|".join(f"{field}={index_value(values[field])}" for field in sorted(values))
        return f"{namespace}:idx:{collection}:{parts}"
