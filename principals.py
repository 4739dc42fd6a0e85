#!/usr/bin/env python3
"""
Principal resolution for Azure RBAC Auditor
Resolver context caching identity directory lookups for the duration of a run
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from models import Principal, PrincipalType

logger = logging.getLogger(__name__)

# lookup(principal_id, hinted_type) -> directory record or None when not found
PrincipalLookup = Callable[[str, Optional[str]], Awaitable[Optional[Dict]]]


def principal_from_record(principal_id: str, hinted_type: Optional[str], record: Dict) -> Principal:
    """Build a resolved Principal from a directory record"""
    principal_type = PrincipalType.from_azure(record.get('principal_type') or hinted_type)
    return Principal(
        id=principal_id,
        display_name=record.get('display_name') or principal_id,
        type=principal_type,
        is_external=bool(record.get('is_external', False)),
        user_principal_name=record.get('user_principal_name'),
        app_id=record.get('app_id'),
        is_resolved=True,
    )


class PrincipalResolver:
    """
    Explicit resolver context: a principal cache plus the lookup collaborator.

    Each id is looked up at most once per resolver, even when several
    subscription workers ask for it concurrently. Entries are never
    invalidated.
    """

    def __init__(self, lookup: Optional[PrincipalLookup] = None):
        self.lookup = lookup
        self._cache: Dict[str, Principal] = {}
        self._id_locks: Dict[str, asyncio.Lock] = {}
        self._lock = asyncio.Lock()
        self.lookup_count = 0

    @property
    def principals(self) -> Dict[str, Principal]:
        return dict(self._cache)

    def get(self, principal_id: str) -> Optional[Principal]:
        return self._cache.get(principal_id)

    async def _lock_for(self, principal_id: str) -> asyncio.Lock:
        async with self._lock:
            if principal_id not in self._id_locks:
                self._id_locks[principal_id] = asyncio.Lock()
            return self._id_locks[principal_id]

    async def resolve(self, principal_id: str, hinted_type: Optional[str] = None) -> Principal:
        """Check the cache, else ask the lookup collaborator, else fall back to the raw id"""
        cached = self._cache.get(principal_id)
        if cached is not None:
            return cached

        id_lock = await self._lock_for(principal_id)
        async with id_lock:
            cached = self._cache.get(principal_id)
            if cached is not None:
                return cached

            record = None
            if self.lookup is not None:
                self.lookup_count += 1
                try:
                    record = await self.lookup(principal_id, hinted_type)
                except Exception as e:
                    logger.warning(f"Principal lookup failed for {principal_id}: {e}")

            if record:
                principal = principal_from_record(principal_id, hinted_type, record)
            else:
                logger.debug(f"Principal {principal_id} not found in directory")
                principal = Principal.unresolved(principal_id, hinted_type)

            self._cache[principal_id] = principal
            return principal

    async def resolve_many(self, hinted_types: Dict[str, Optional[str]]) -> Dict[str, Principal]:
        """Resolve a batch of principal ids (id -> hinted type) concurrently"""
        ids = list(hinted_types)
        resolved = await asyncio.gather(*(self.resolve(pid, hinted_types[pid]) for pid in ids))
        return dict(zip(ids, resolved))

    def merge(self, other: "PrincipalResolver") -> None:
        """Merge another worker's cache; entries already present win"""
        for principal_id, principal in other._cache.items():
            self._cache.setdefault(principal_id, principal)
