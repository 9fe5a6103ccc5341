import asyncio
import logging
import typing as t

import aiohttp

from . import errors, utils
from .dispatcher import Event, EventDispatcher, Handler, Predicate, Subscription
from .gateway import DiscordWebSocket, Identifier, Intents
from .http import DiscordHTTPClient
from .snowflake import Snowflake, SnowflakeLike
from .types import UpdateStatus
from .voice import VoiceClient
from .backoff import ExponentialBackoff

_log = logging.getLogger(__name__)


class Bot:
    """A bot session: one REST client, one Gateway connection per shard and
    the voice connections, all feeding a single `EventDispatcher`.
    """

    __slots__ = (
        "token",
        "intents",
        "http",
        "dispatcher",
        "shards",
        "voice_clients",
        "presence",
        "shard_count",
        "shard_ids",
        "max_reconnect_delay",

        "_session",
        "_tasks",
        "_opened",
        "_closed",
    )

    def __init__(
        self,
        token: str,
        *,
        intents: int = Intents.default(),
        bot: bool = True,
        shard_count: t.Optional[int] = None,
        shard_ids: t.Optional[t.Sequence[int]] = None,
        presence: t.Optional[UpdateStatus] = None,
        http: t.Optional[DiscordHTTPClient] = None,
        max_reconnect_delay: float = 120.0,
    ) -> None:
        self.token = token
        self.intents = Intents(intents)
        self.http = http or DiscordHTTPClient(token, bot=bot)
        self.dispatcher = EventDispatcher()
        self.shards: t.List[DiscordWebSocket] = []
        self.voice_clients: t.Dict[Snowflake, VoiceClient] = {}
        self.presence = presence
        self.shard_count = shard_count
        self.shard_ids = shard_ids
        self.max_reconnect_delay = max_reconnect_delay

        self._session: t.Optional[aiohttp.ClientSession] = None
        self._tasks: t.List[asyncio.Task] = []
        self._opened = False
        self._closed = False

    def __repr__(self) -> str:
        return f"<Bot shards={len(self.shards)} voice={len(self.voice_clients)}>"

    def is_closed(self) -> bool:
        return self._closed

    @property
    def latency(self) -> t.Optional[float]:
        """Mean heartbeat latency over the shards that measured one."""
        values = [s.latency for s in self.shards if s.latency is not None]
        return sum(values) / len(values) if values else None

    @property
    def user_id(self) -> t.Optional[Snowflake]:
        """The bot user, set by the first shard to get READY."""
        for ws in self.shards:
            if ws.user_id is not None:
                return ws.user_id

        return None

    # Events

    def add_intents(self, intents: int) -> None:
        if self._opened:
            raise RuntimeError("intents cannot change once the bot is open")

        self.intents |= intents

    def add_handler(self, callback: Handler, *names: str, predicate: t.Optional[Predicate] = None) -> t.Callable[[], None]:
        return self.dispatcher.add_handler(callback, *names, predicate=predicate)

    def subscribe(self, *names: str, predicate: t.Optional[Predicate] = None, maxsize: int = 0) -> Subscription:
        return self.dispatcher.subscribe(*names, predicate=predicate, maxsize=maxsize)

    async def wait_for(self, *names: str, predicate: t.Optional[Predicate] = None, timeout: t.Optional[float] = None) -> Event:
        return await self.dispatcher.wait_for(*names, predicate=predicate, timeout=timeout)

    # Connection

    async def open(self) -> None:
        """Starts every shard and waits until all of them are ready.

        Raises the error of the first shard that fails instead.
        """
        if self._opened:
            return

        self._opened = True

        gateway = await self.http.get_bot_gateway()
        identifier = Identifier.from_limit(gateway["session_start_limit"])

        count = self.shard_count or gateway.get("shards", 1) or 1
        ids = list(self.shard_ids) if self.shard_ids is not None else list(range(count))

        self._session = aiohttp.ClientSession()

        for shard_id in ids:
            ws = DiscordWebSocket(
                self.token,
                self.intents,
                url=gateway["url"],
                dispatcher=self.dispatcher,
                shard=(shard_id, count) if count > 1 or self.shard_ids is not None else None,
                session=self._session,
                identifier=identifier,
                presence=self.presence,
                backoff=ExponentialBackoff(1.0, self.max_reconnect_delay),
            )

            self.shards.append(ws)
            self._tasks.append(asyncio.ensure_future(ws.run()))

        waiters = [asyncio.ensure_future(ws.wait_until_ready()) for ws in self.shards]

        try:
            await asyncio.gather(*waiters)
        except BaseException:
            for waiter in waiters:
                waiter.cancel()

            await self.close()
            raise

    async def close(self) -> None:
        if self._closed:
            return

        self._closed = True

        for client in list(self.voice_clients.values()):
            with utils.suppress_all():
                await client.disconnect()

        self.voice_clients.clear()

        for ws in self.shards:
            await ws.close()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        await self.dispatcher.close()

        with utils.suppress_all():
            await self.http.close()

        if self._session is not None:
            await self._session.close()
            self._session = None

    async def wait_closed(self) -> None:
        """Waits until every shard stopped, raising a fatal close if one happened."""
        for task in asyncio.as_completed(self._tasks):
            await task

    def run(self, *, log_level: t.Optional[int] = logging.INFO) -> None:
        """Opens the bot and blocks until it closes or Ctrl-C."""
        if log_level is not None:
            utils.setup_logging(log_level)

        async def runner() -> None:
            try:
                await self.open()
                await self.wait_closed()
            finally:
                if not self.is_closed():
                    await self.close()

        with utils.suppress_all(KeyboardInterrupt):
            asyncio.run(runner())

    # Gateway commands

    def shard_for(self, guild_id: SnowflakeLike) -> DiscordWebSocket:
        if not self.shards:
            raise errors.GatewayError("bot is not open")

        if len(self.shards) == 1:
            return self.shards[0]

        count = self.shards[0].shard[1] if self.shards[0].shard else len(self.shards)
        shard_id = (int(guild_id) >> 22) % count

        for ws in self.shards:
            if ws.shard_id == shard_id:
                return ws

        raise errors.GatewayError(f"shard {shard_id} is not run by this process")

    async def update_status(
        self,
        status: str = "online",
        *,
        activities: t.Optional[t.List[t.Dict[str, t.Any]]] = None,
        afk: bool = False,
    ) -> None:
        await asyncio.gather(*(ws.update_status(status, activities=activities, afk=afk) for ws in self.shards))

    # Voice

    async def join_voice(
        self,
        guild_id: SnowflakeLike,
        channel_id: SnowflakeLike,
        *,
        self_mute: bool = False,
        self_deaf: bool = False,
    ) -> VoiceClient:
        """Connects to a voice channel, or moves the existing connection."""
        guild_id = Snowflake(guild_id)
        client = self.voice_clients.get(guild_id)

        if client is not None and not client.is_closed():
            if client.channel_id != Snowflake(channel_id):
                await client.move_to(channel_id)
            return client

        if self.user_id is None:
            raise errors.VoiceError("the bot user is unknown until READY")

        client = VoiceClient(
            self.shard_for(guild_id),
            guild_id,
            channel_id,
            self.user_id,
            dispatcher=self.dispatcher,
            self_mute=self_mute,
            self_deaf=self_deaf,
            session=self._session,
        )

        self.voice_clients[guild_id] = client

        try:
            await client.connect()
        except BaseException:
            self.voice_clients.pop(guild_id, None)
            raise

        return client

    async def leave_voice(self, guild_id: SnowflakeLike) -> None:
        client = self.voice_clients.pop(Snowflake(guild_id), None)

        if client is not None:
            await client.disconnect()
