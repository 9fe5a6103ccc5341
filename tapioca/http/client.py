import typing as t
from dataclasses import dataclass

from .. import types, utils
from ..image import Image, to_data_uri
from ..message import Embed, AllowedMentions, SendMessageData
from ..snowflake import Snowflake, SnowflakeLike
from ..utils import MISSING, strip_missing
from .core import HTTPClient, Transport
from .multipart import File
from .query import query_field
from .route import Route

MAX_MESSAGES_FETCH = 100
MAX_MEMBERS_FETCH = 1000
MAX_GUILDS_FETCH = 200
MAX_BULK_DELETE = 100


@dataclass
class _MessagesQuery:
    limit: int = query_field("limit", omitempty=True, default=0)
    before: t.Optional[SnowflakeLike] = query_field("before", default=None)
    after: t.Optional[SnowflakeLike] = query_field("after", default=None)
    around: t.Optional[SnowflakeLike] = query_field("around", default=None)


@dataclass
class _AfterQuery:
    limit: int = query_field("limit", omitempty=True, default=0)
    after: t.Optional[SnowflakeLike] = query_field("after", omitempty=True, default=None)
    before: t.Optional[SnowflakeLike] = query_field("before", omitempty=True, default=None)


def _page_size(hard_limit: int, limit: int, fetched: int) -> int:
    if limit <= 0:
        return hard_limit

    return min(hard_limit, limit - fetched)


class DiscordHTTPClient:
    """The REST endpoints, grouped like the Discord API reference.

    Every call goes through a `Transport`, which is an `HTTPClient` unless
    one is given.
    """

    __slots__ = ("transport",)

    def __init__(self, token: t.Optional[str] = None, *, transport: t.Optional[Transport] = None, **kwargs: t.Any) -> None:
        self.transport: Transport = transport or HTTPClient(token, **kwargs)

    @property
    def token(self) -> t.Optional[str]:
        return getattr(self.transport, "token", None)

    def is_closed(self) -> bool:
        return bool(getattr(self.transport, "is_closed", lambda: False)())

    async def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()

    async def request(self, route: Route, **kwargs: t.Any) -> t.Any:
        return await self.transport.request_json(route, **kwargs)

    async def _paginate(
        self,
        route: Route,
        hard_limit: int,
        limit: int,
        query: t.Any,
        advance: t.Callable[[t.Any, t.List[t.Dict[str, t.Any]]], None],
    ) -> t.List[t.Any]:
        """Fetches pages until `limit` items (0 for all) or a short page."""
        items: t.List[t.Any] = []

        while True:
            query.limit = _page_size(hard_limit, limit, len(items))
            page = await self.request(route, params=query)
            items.extend(page)

            if len(page) < hard_limit or (limit > 0 and len(items) >= limit):
                break

            advance(query, page)

        return items

    # Channel

    async def get_channel(self, id: SnowflakeLike) -> types.Channel:
        r = Route("GET", "/channels/{id}", id=id)
        return await self.request(r)

    async def delete_channel(
        self,
        id: SnowflakeLike,
        *,
        reason: t.Optional[str] = None,
    ) -> None:
        r = Route("DELETE", "/channels/{id}", id=id)
        await self.transport.fast_request(r, reason=reason)

    # Message

    async def get_message(self, channel_id: SnowflakeLike, message_id: SnowflakeLike) -> types.Message:
        r = Route(
            "GET", "/channels/{channel_id}/messages/{message_id}",

            channel_id=channel_id,
            message_id=message_id,
        )

        return await self.request(r)

    async def messages(self, channel_id: SnowflakeLike, limit: int = 100) -> t.List[types.Message]:
        """The latest `limit` messages, newest first. 0 fetches the whole channel."""
        return await self.messages_before(channel_id, None, limit)

    async def messages_before(
        self,
        channel_id: SnowflakeLike,
        before: t.Optional[SnowflakeLike],
        limit: int = 100,
    ) -> t.List[types.Message]:
        r = Route("GET", "/channels/{channel_id}/messages", channel_id=channel_id)

        def advance(query: _MessagesQuery, page: t.List[t.Dict[str, t.Any]]) -> None:
            query.before = min(Snowflake(m["id"]) for m in page)

        return await self._paginate(r, MAX_MESSAGES_FETCH, limit, _MessagesQuery(before=before), advance)

    async def messages_after(
        self,
        channel_id: SnowflakeLike,
        after: SnowflakeLike,
        limit: int = 100,
    ) -> t.List[types.Message]:
        r = Route("GET", "/channels/{channel_id}/messages", channel_id=channel_id)

        def advance(query: _MessagesQuery, page: t.List[t.Dict[str, t.Any]]) -> None:
            query.after = max(Snowflake(m["id"]) for m in page)

        return await self._paginate(r, MAX_MESSAGES_FETCH, limit, _MessagesQuery(after=after), advance)

    async def messages_around(
        self,
        channel_id: SnowflakeLike,
        around: SnowflakeLike,
        limit: int = 50,
    ) -> t.List[types.Message]:
        r = Route("GET", "/channels/{channel_id}/messages", channel_id=channel_id)
        query = _MessagesQuery(limit=max(1, min(limit, MAX_MESSAGES_FETCH)), around=around)
        return await self.request(r, params=query)

    async def send_message(
        self,
        channel_id: SnowflakeLike,
        content: str = "",
        *,
        embeds: t.Optional[t.List[Embed]] = None,
        allowed_mentions: t.Optional[AllowedMentions] = None,
        files: t.Optional[t.Sequence[File]] = None,
        data: t.Optional[SendMessageData] = None,
    ) -> types.Message:
        if data is None:
            data = SendMessageData(content=content, embeds=list(embeds or ()), allowed_mentions=allowed_mentions)

        data.validate(has_files=bool(files))

        r = Route("POST", "/channels/{channel_id}/messages", channel_id=channel_id)
        return await self.request(r, json=data.to_dict(), files=files)

    async def edit_message(
        self,
        channel_id: SnowflakeLike,
        message_id: SnowflakeLike,
        *,
        content: t.Optional[str] = MISSING,
        embeds: t.Optional[t.List[Embed]] = MISSING,
        allowed_mentions: t.Optional[AllowedMentions] = MISSING,
        flags: t.Optional[int] = MISSING,
    ) -> types.Message:
        """Only given fields change, `None` clears a field."""
        if embeds:
            for embed in embeds:
                embed.validate()

        if allowed_mentions:
            allowed_mentions.validate()

        payload = strip_missing({
            "content": content,
            "embeds": [e.to_dict() for e in embeds] if embeds else embeds,
            "allowed_mentions": allowed_mentions.to_dict() if allowed_mentions else allowed_mentions,
            "flags": flags,
        })

        r = Route(
            "PATCH", "/channels/{channel_id}/messages/{message_id}",

            channel_id=channel_id,
            message_id=message_id,
        )

        return await self.request(r, json=payload)

    async def delete_message(
        self,
        channel_id: SnowflakeLike,
        message_id: SnowflakeLike,
        *,
        reason: t.Optional[str] = None,
    ) -> None:
        r = Route(
            "DELETE", "/channels/{channel_id}/messages/{message_id}",

            channel_id=channel_id,
            message_id=message_id,
        )

        await self.transport.fast_request(r, reason=reason)

    async def delete_messages(
        self,
        channel_id: SnowflakeLike,
        message_ids: t.Sequence[SnowflakeLike],
        *,
        reason: t.Optional[str] = None,
    ) -> None:
        """Deletes any number of messages, bulk deleting where possible."""
        if not message_ids:
            return

        if len(message_ids) == 1:
            return await self.delete_message(channel_id, message_ids[0], reason=reason)

        if len(message_ids) > MAX_BULK_DELETE:
            for chunk in utils.chunks(message_ids, MAX_BULK_DELETE):
                await self.delete_messages(channel_id, chunk, reason=reason)

            return

        r = Route("POST", "/channels/{channel_id}/messages/bulk-delete", channel_id=channel_id)
        payload = {"messages": [str(id) for id in message_ids]}

        await self.transport.fast_request(r, json=payload, reason=reason)

    # Emoji

    async def get_guild_emojis(
        self,
        guild_id: SnowflakeLike,
    ) -> t.List[types.Emoji]:
        r = Route(
            "GET", "/guilds/{guild_id}/emojis",

            guild_id=guild_id
        )

        return await self.request(r)

    async def get_guild_emoji(
        self,
        guild_id: SnowflakeLike,
        emoji_id: SnowflakeLike,
    ) -> types.Emoji:
        r = Route(
            "GET", "/guilds/{guild_id}/emojis/{emoji_id}",

            guild_id=guild_id,
            emoji_id=emoji_id,
        )

        return await self.request(r)

    async def create_guild_emoji(
        self,
        guild_id: SnowflakeLike,
        *,
        name: str,
        image: t.Union[Image, bytes],
        roles: t.Optional[t.List[SnowflakeLike]] = None,
        reason: t.Optional[str] = None,
    ) -> types.Emoji:
        payload: types.CreateEmoji = {
            "name": name,
            "image": to_data_uri(image),
            "roles": [str(r) for r in roles or ()],
        }

        r = Route("POST", "/guilds/{guild_id}/emojis", guild_id=guild_id)
        return await self.request(r, json=payload, reason=reason)

    async def edit_guild_emoji(
        self,
        guild_id: SnowflakeLike,
        emoji_id: SnowflakeLike,
        *,
        name: t.Optional[str] = MISSING,
        roles: t.Optional[t.List[SnowflakeLike]] = MISSING,
        reason: t.Optional[str] = None,
    ) -> types.Emoji:
        payload: types.EditEmoji = strip_missing({  # type: ignore
            "name": name,
            "roles": [str(r) for r in roles] if roles else roles,
        })

        r = Route(
            "PATCH", "/guilds/{guild_id}/emojis/{emoji_id}",

            guild_id=guild_id,
            emoji_id=emoji_id,
        )

        return await self.request(r, json=payload, reason=reason)

    async def delete_guild_emoji(
        self,
        guild_id: SnowflakeLike,
        emoji_id: SnowflakeLike,
        *,
        reason: t.Optional[str] = None,
    ) -> None:
        r = Route(
            "DELETE", "/guilds/{guild_id}/emojis/{emoji_id}",

            guild_id=guild_id,
            emoji_id=emoji_id,
        )

        await self.transport.fast_request(r, reason=reason)

    # Guild

    async def get_guild(
        self,
        guild_id: SnowflakeLike
    ) -> types.Guild:
        r = Route("GET", "/guilds/{guild_id}", guild_id=guild_id)
        return await self.request(r)

    async def member(self, guild_id: SnowflakeLike, user_id: SnowflakeLike) -> types.Member:
        r = Route(
            "GET", "/guilds/{guild_id}/members/{user_id}",

            guild_id=guild_id,
            user_id=user_id,
        )

        return await self.request(r)

    async def members(self, guild_id: SnowflakeLike, limit: int = 1000) -> t.List[types.Member]:
        """Guild members ordered by user id. 0 fetches everyone."""
        r = Route("GET", "/guilds/{guild_id}/members", guild_id=guild_id)

        def advance(query: _AfterQuery, page: t.List[t.Dict[str, t.Any]]) -> None:
            query.after = max(Snowflake(m["user"]["id"]) for m in page)

        return await self._paginate(r, MAX_MEMBERS_FETCH, limit, _AfterQuery(), advance)

    # Invite

    async def get_invite(
        self,
        invite_code: str,
        *,
        with_counts: t.Optional[bool] = None,
        with_expiration: t.Optional[bool] = None,
    ) -> types.Invite:
        params = {
            "with_counts": with_counts,
            "with_expiration": with_expiration,
        }

        r = Route("GET", "/invites/{invite_code}", invite_code=invite_code)
        return await self.request(r, params=params)

    async def delete_invite(
        self,
        invite_code: str,
        *,
        reason: t.Optional[str] = None,
    ) -> None:
        r = Route("DELETE", "/invites/{invite_code}", invite_code=invite_code)
        await self.transport.fast_request(r, reason=reason)

    # User

    async def get_user(self, id: t.Union[SnowflakeLike, t.Literal["@me"]]) -> types.User:
        r = Route("GET", "/users/{id}", id=id)
        return await self.request(r)

    async def get_current_user(self) -> types.User:
        return await self.get_user("@me")

    async def modify_current_user(
        self,
        *,
        username: str = MISSING,
        avatar: t.Optional[t.Union[Image, bytes]] = MISSING,
    ) -> types.User:
        """`avatar=None` removes the avatar."""
        payload = strip_missing({
            "username": username,
            "avatar": avatar if avatar is MISSING else to_data_uri(avatar),
        })

        r = Route("PATCH", "/users/@me")
        return await self.request(r, json=payload)

    async def guilds(self, limit: int = 200) -> t.List[types.PartialGuild]:
        """Guilds of the current user. 0 fetches all of them."""
        r = Route("GET", "/users/@me/guilds")

        def advance(query: _AfterQuery, page: t.List[t.Dict[str, t.Any]]) -> None:
            query.after = max(Snowflake(g["id"]) for g in page)

        return await self._paginate(r, MAX_GUILDS_FETCH, limit, _AfterQuery(), advance)

    # Webhook

    async def execute_webhook(
        self,
        webhook_id: SnowflakeLike,
        token: str,
        *,
        data: SendMessageData,
        files: t.Optional[t.Sequence[File]] = None,
        wait: bool = False,
        username: t.Optional[str] = None,
        avatar_url: t.Optional[str] = None,
    ) -> t.Optional[types.Message]:
        """Runs without the bot token, webhooks authenticate by their own."""
        data.validate(has_files=bool(files))

        payload = data.to_dict()
        if username:
            payload["username"] = username
        if avatar_url:
            payload["avatar_url"] = avatar_url

        r = Route("POST", "/webhooks/{webhook_id}/{token}", auth=False, webhook_id=webhook_id, token=token)
        return await self.request(r, json=payload, files=files, params={"wait": wait})

    # Gateway

    async def get_gateway(self) -> types.GatewayPayload:
        r = Route("GET", "/gateway", auth=False)
        return await self.request(r)

    async def get_bot_gateway(self) -> types.GatewayBotPayload:
        r = Route("GET", "/gateway/bot")
        return await self.request(r)

