from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Protocol

from django.db import transaction

from ..models import StorageEntry


class Storage(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def keys(self, prefix: str = '') -> List[str]:
        ...

    def lock(self, key: str):
        """Context manager serializing read-modify-write cycles on ``key``."""
        ...


class MemoryStorage:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = '') -> List[str]:
        return sorted(key for key in self._data if key.startswith(prefix))

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._guard:
            key_lock = self._locks.setdefault(key, threading.Lock())
        with key_lock:
            yield


class DatabaseStorage:
    """Storage backed by the ``StorageEntry`` table."""

    def get(self, key: str) -> Optional[str]:
        value = StorageEntry.objects.filter(key=key).values_list('value', flat=True).first()
        return value or None

    def set(self, key: str, value: str) -> None:
        StorageEntry.objects.update_or_create(key=key, defaults={'value': value})

    def remove(self, key: str) -> None:
        StorageEntry.objects.filter(key=key).delete()

    def keys(self, prefix: str = '') -> List[str]:
        return list(
            StorageEntry.objects.filter(key__startswith=prefix).order_by('key').values_list('key', flat=True)
        )

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with transaction.atomic():
            StorageEntry.objects.get_or_create(key=key, defaults={'value': ''})
            StorageEntry.objects.select_for_update().get(key=key)
            yield
