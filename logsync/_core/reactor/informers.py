"""
Informers: the watch-caches of the resources with change notifications.

An informer lists and then watches one resource kind (optionally restricted
by a field selector), keeps the latest known state of every object
in its `Store`, and notifies its subscribers about the changes::

    informer.subscribe(on_add=..., on_update=..., on_delete=...)

The notifications are called synchronously in the informer's own task,
one at a time and in the order of the watch-events. They must be fast
and must not block: normally, they only put work items into the work queue.

The store is also the lister of the resource: the reconcilers read
the current state of the objects from it by their keys.

When the watch-stream is restarted (e.g. on "410 Gone"), the resources are
re-listed. Every re-listed object is notified as an update (even if unchanged),
and every object missing from the new listing is notified as a deletion
with a `bodies.DeletedFinalStateUnknown` tombstone instead of the object.
"""
import asyncio
import dataclasses
import logging
from collections.abc import Callable, Iterator, Mapping

from logsync._cogs.clients import watching
from logsync._cogs.configs import configuration
from logsync._cogs.structs import bodies, references

logger = logging.getLogger(__name__)

AddHandler = Callable[[bodies.RawBody], None]
UpdateHandler = Callable[[bodies.RawBody, bodies.RawBody], None]
DeleteHandler = Callable[[bodies.RawBody | bodies.DeletedFinalStateUnknown], None]


@dataclasses.dataclass(frozen=True)
class Subscription:
    on_add: AddHandler | None = None
    on_update: UpdateHandler | None = None
    on_delete: DeleteHandler | None = None


class Store:
    """
    The latest known state of the objects, by their keys (``namespace/name``).
    """

    def __init__(self) -> None:
        super().__init__()
        self._items: dict[str, bodies.RawBody] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def get_by_key(self, key: str) -> bodies.RawBody | None:
        return self._items.get(key)

    def list(self) -> list[bodies.RawBody]:
        return list(self._items.values())

    def _put(self, key: str, body: bodies.RawBody) -> bodies.RawBody | None:
        old = self._items.get(key)
        self._items[key] = body
        return old

    def _pop(self, key: str) -> bodies.RawBody | None:
        return self._items.pop(key, None)


class Informer:

    def __init__(
            self,
            *,
            settings: configuration.OperatorSettings,
            resource: references.Resource,
            namespace: references.Namespace = None,
            params: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.resource = resource
        self.namespace = namespace
        self.params = dict(params or {})
        self.store = Store()
        self._subscriptions: list[Subscription] = []
        self._synced = asyncio.Event()
        self._stopped = asyncio.Event()

    def __repr__(self) -> str:
        selector = self.params.get('fieldSelector')
        suffix = f' ({selector})' if selector else ''
        return f'<{self.__class__.__name__} {self.resource!r}{suffix}>'

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    def subscribe(
            self,
            on_add: AddHandler | None = None,
            on_update: UpdateHandler | None = None,
            on_delete: DeleteHandler | None = None,
    ) -> Subscription:
        subscription = Subscription(on_add=on_add, on_update=on_update, on_delete=on_delete)
        self._subscriptions.append(subscription)
        return subscription

    def has_synced(self) -> bool:
        return self._synced.is_set()

    async def wait_for_sync(self) -> bool:
        """
        Wait until the first listing is over, or until the informer has stopped.

        Returns ``True`` if the informer has synced, ``False`` if it has failed
        or was stopped before that (e.g. due to the access errors).
        """
        if not self._synced.is_set():
            synced = asyncio.create_task(self._synced.wait())
            stopped = asyncio.create_task(self._stopped.wait())
            try:
                await asyncio.wait([synced, stopped], return_when=asyncio.FIRST_COMPLETED)
            finally:
                synced.cancel()
                stopped.cancel()
        return self._synced.is_set()

    async def run(
            self,
            *,
            _iterations: int | None = None,  # used in tests/mocks/fixtures
    ) -> None:
        """
        Watch the resource infinitely, and keep the store and the subscribers updated.
        """
        listing: dict[str, bodies.RawBody] | None = None
        try:
            async for raw_event in watching.infinite_watch(
                settings=self.settings,
                resource=self.resource,
                namespace=self.namespace,
                params=self.params,
                _iterations=_iterations,
            ):
                if raw_event is watching.Bookmark.LISTING:
                    listing = {}
                elif raw_event is watching.Bookmark.LISTED:
                    self.replace(listing or {})
                    listing = None
                    if not self._synced.is_set():
                        logger.debug(f"{self!r} has synced: {len(self.store)} objects.")
                    self._synced.set()
                elif listing is not None and raw_event['type'] is None:
                    body = raw_event['object']
                    listing[bodies.get_key(body)] = body
                else:
                    self.handle(raw_event)
        finally:
            self._stopped.set()

    def handle(self, raw_event: bodies.RawEvent) -> None:
        """
        Apply a single watch-event to the store, and notify the subscribers.
        """
        body = raw_event['object']
        key = bodies.get_key(body)
        if raw_event['type'] == 'DELETED':
            self.store._pop(key)
            self._notify_delete(body)
        else:
            old = self.store._put(key, body)
            if old is None:
                self._notify_add(body)
            else:
                self._notify_update(old, body)

    def replace(self, listing: Mapping[str, bodies.RawBody]) -> None:
        """
        Replace the whole store with a new listing, and notify about the differences.
        """
        for key, body in listing.items():
            old = self.store._put(key, body)
            if old is None:
                self._notify_add(body)
            else:
                self._notify_update(old, body)

        vanished = [key for key in self.store if key not in listing]
        for key in vanished:
            old = self.store._pop(key)
            if old is not None:
                self._notify_delete(bodies.DeletedFinalStateUnknown(key=key, obj=old))

    def _notify_add(self, body: bodies.RawBody) -> None:
        for subscription in self._subscriptions:
            if subscription.on_add is not None:
                self._call(subscription.on_add, body)

    def _notify_update(self, old: bodies.RawBody, new: bodies.RawBody) -> None:
        for subscription in self._subscriptions:
            if subscription.on_update is not None:
                self._call(subscription.on_update, old, new)

    def _notify_delete(self, obj: bodies.RawBody | bodies.DeletedFinalStateUnknown) -> None:
        for subscription in self._subscriptions:
            if subscription.on_delete is not None:
                self._call(subscription.on_delete, obj)

    def _call(self, fn: Callable[..., None], *args: object) -> None:
        # A broken subscriber must not break the cache or other subscribers.
        try:
            fn(*args)
        except Exception as e:
            logger.exception(f"Notification handler {fn!r} of {self!r} has failed: {e}")
