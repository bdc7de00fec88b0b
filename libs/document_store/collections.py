"""
Collection layout used by the signal bridge.

Each collection lists the field combinations it keeps secondary indexes for.
A query whose equality filters match one of these combinations exactly is
served from the index; any other filter falls back to a collection scan.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class CollectionSpec:
    """Name and secondary indexes of one collection."""

    name: str
    indexes: tuple[tuple[str, ...], ...] = ()


SIGNALS = CollectionSpec("signals")
ACCOUNTS = CollectionSpec("accounts", indexes=(("active",), ("token",)))
DAILY_STATS = CollectionSpec("daily_stats", indexes=(("account_id",),))
COMMANDS = CollectionSpec("commands", indexes=(("account_id", "status"), ("status",)))

BRIDGE_COLLECTIONS: tuple[CollectionSpec, ...] = (SIGNALS, ACCOUNTS, DAILY_STATS, COMMANDS)
