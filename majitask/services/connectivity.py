"""Connectivity/auth selector - decides which adapter is authoritative."""

from enum import Enum
from typing import Callable, Optional

from majitask.services.local_store import LocalKeyValueStore, get_local_store
from majitask.utils.config import SyncConfig
from majitask.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


class AdapterKind(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"


def select_adapter_kind(is_online: bool, token: Optional[str]) -> AdapterKind:
    """Remote iff the network is reachable and a non-empty credential is held."""
    if is_online and token:
        return AdapterKind.REMOTE
    return AdapterKind.LOCAL


class StoredTokenProvider:
    """Reads the access token the auth layer keeps in the local store."""

    def __init__(self, store: Optional[LocalKeyValueStore] = None, key: Optional[str] = None):
        self.store = store or get_local_store()
        self.key = key or SyncConfig.ACCESS_TOKEN_KEY

    def __call__(self) -> Optional[str]:
        token = self.store.get_item(self.key)
        if not token:
            return None
        return token.strip() or None


class ConnectivityMonitor:
    """
    Holds the runtime's network reachability flag.

    The runtime calls ``set_online`` on every online/offline transition;
    listeners are notified only when the flag actually changes.
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed", online=online)
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as e:
                logger.error("Connectivity listener failed", error=str(e), exc_info=True)

    def add_listener(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
