import asyncio
import logging
import inspect
import typing as t

_log = logging.getLogger(__name__)

Predicate = t.Callable[["Event"], bool]
Handler = t.Callable[["Event"], t.Any]


class Event:
    __slots__ = ("name", "data", "sequence", "shard")

    def __init__(
        self,
        name: str,
        data: t.Any,
        sequence: t.Optional[int] = None,
        shard: t.Optional[t.Tuple[int, int]] = None,
    ) -> None:
        self.name = name
        self.data = data
        self.sequence = sequence
        self.shard = shard

    def __repr__(self) -> str:
        return "<Event name={0.name!r} sequence={0.sequence} shard={0.shard}>".format(self)


class Subscription:
    """A queue of the events matching some names and a predicate.

    It is registered as soon as it is created, so an event dispatched
    after `EventDispatcher.subscribe` returns is never missed.
    """

    __slots__ = (
        "names",
        "predicate",
        "dropped",

        "_dispatcher",
        "_queue",
        "_closed",
        "_wakeup",
    )

    def __init__(
        self,
        dispatcher: "EventDispatcher",
        names: t.FrozenSet[str],
        predicate: t.Optional[Predicate],
        maxsize: int,
    ) -> None:
        self.names = names
        self.predicate = predicate
        self.dropped = 0

        self._dispatcher = dispatcher
        self._queue: "asyncio.Queue[Event]" = asyncio.Queue(maxsize)
        self._closed = False
        # set on every put and on unsubscribe, wakes async iterators
        self._wakeup = asyncio.Event()

    def __repr__(self) -> str:
        return f"<Subscription names={sorted(self.names)} pending={self._queue.qsize()}>"

    def is_closed(self) -> bool:
        return self._closed

    def matches(self, event: Event) -> bool:
        if self.names and event.name not in self.names:
            return False

        return self.predicate is None or bool(self.predicate(event))

    def put(self, event: Event) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            _log.warning("Subscription queue is full, dropped %s (%d dropped so far).", event.name, self.dropped)
        else:
            self._wakeup.set()

    async def get(self) -> Event:
        return await self._queue.get()

    def get_nowait(self) -> Event:
        return self._queue.get_nowait()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        """Ends once unsubscribed and drained, even while waiting."""
        while self._queue.empty():
            if self._closed:
                raise StopAsyncIteration

            self._wakeup.clear()
            await self._wakeup.wait()

        return self._queue.get_nowait()

    def unsubscribe(self) -> None:
        if self._closed:
            return

        self._closed = True
        self._wakeup.set()
        self._dispatcher._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *_: t.Any) -> None:
        self.unsubscribe()


class EventDispatcher:
    """Fans Gateway events out to subscriptions and handlers.

    `dispatch` never waits: events go to each matching subscription in
    subscription order, and a full bounded subscription drops the event.
    """

    __slots__ = ("_subscriptions", "_handlers")

    def __init__(self) -> None:
        self._subscriptions: t.List[Subscription] = []
        self._handlers: t.Dict[Subscription, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        *names: str,
        predicate: t.Optional[Predicate] = None,
        maxsize: int = 0,
    ) -> Subscription:
        """Subscribes to `names` (every event if none given)."""
        sub = Subscription(self, frozenset(names), predicate, maxsize)
        self._subscriptions.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

        task = self._handlers.pop(sub, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def dispatch(self, event: Event) -> None:
        for sub in list(self._subscriptions):
            try:
                matched = sub.matches(event)
            except Exception:
                _log.exception("Predicate of %r failed on %s.", sub, event.name)
                continue

            if matched:
                sub.put(event)

    async def wait_for(
        self,
        *names: str,
        predicate: t.Optional[Predicate] = None,
        timeout: t.Optional[float] = None,
    ) -> Event:
        """Waits for the next matching event, raising `asyncio.TimeoutError` after `timeout`."""
        sub = self.subscribe(*names, predicate=predicate)

        try:
            return await asyncio.wait_for(sub.get(), timeout)
        finally:
            sub.unsubscribe()

    def add_handler(self, callback: Handler, *names: str, predicate: t.Optional[Predicate] = None) -> t.Callable[[], None]:
        """Runs `callback` for every matching event on its own task.

        The callback may be a plain function or a coroutine function, an
        exception it raises is logged and the handler keeps running.
        Returns a function that removes the handler.
        """
        sub = self.subscribe(*names, predicate=predicate)
        self._handlers[sub] = asyncio.ensure_future(self._consume(sub, callback))
        return sub.unsubscribe

    async def _consume(self, sub: Subscription, callback: Handler) -> None:
        async for event in sub:
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                _log.exception("Handler %r raised on %s.", callback, event.name)

    async def close(self) -> None:
        """Removes every subscription and stops the handler tasks."""
        tasks = list(self._handlers.values())

        for sub in list(self._subscriptions):
            sub.unsubscribe()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
