"""Outgoing message payloads and the checks Discord applies to them."""

import typing as t
from dataclasses import dataclass, field

from . import errors
from .snowflake import Snowflake
from .utils import MISSING, strip_missing

EMBED_TITLE_LIMIT = 256
EMBED_DESCRIPTION_LIMIT = 4096
EMBED_FIELDS_LIMIT = 25
EMBED_FIELD_NAME_LIMIT = 256
EMBED_FIELD_VALUE_LIMIT = 1024
EMBED_FOOTER_LIMIT = 2048
EMBED_AUTHOR_LIMIT = 256
EMBED_TOTAL_LIMIT = 6000

MESSAGE_EMBEDS_LIMIT = 10
MENTIONS_LIMIT = 100

PARSE_ROLES = "roles"
PARSE_USERS = "users"
PARSE_EVERYONE = "everyone"


@dataclass
class EmbedFooter:
    text: str
    icon_url: t.Optional[str] = None

    def to_dict(self) -> t.Dict[str, t.Any]:
        d: t.Dict[str, t.Any] = {"text": self.text}
        if self.icon_url:
            d["icon_url"] = self.icon_url
        return d


@dataclass
class EmbedAuthor:
    name: str
    url: t.Optional[str] = None
    icon_url: t.Optional[str] = None

    def to_dict(self) -> t.Dict[str, t.Any]:
        d: t.Dict[str, t.Any] = {"name": self.name}
        if self.url:
            d["url"] = self.url
        if self.icon_url:
            d["icon_url"] = self.icon_url
        return d


@dataclass
class EmbedField:
    name: str
    value: str
    inline: bool = False

    def to_dict(self) -> t.Dict[str, t.Any]:
        return {"name": self.name, "value": self.value, "inline": self.inline}


@dataclass
class Embed:
    title: t.Optional[str] = None
    description: t.Optional[str] = None
    url: t.Optional[str] = None
    color: t.Optional[int] = None
    timestamp: t.Optional[str] = None
    footer: t.Optional[EmbedFooter] = None
    author: t.Optional[EmbedAuthor] = None
    image: t.Optional[str] = None
    thumbnail: t.Optional[str] = None
    fields: t.List[EmbedField] = field(default_factory=list)

    def length(self) -> int:
        """Characters counted against the 6000 total."""
        size = len(self.title or "") + len(self.description or "")

        if self.footer:
            size += len(self.footer.text)

        if self.author:
            size += len(self.author.name)

        for f in self.fields:
            size += len(f.name) + len(f.value)

        return size

    def validate(self) -> None:
        def check(name: str, value: t.Optional[str], limit: int) -> None:
            if value and len(value) > limit:
                raise errors.EmbedOverbound(name, len(value), limit)

        check("title", self.title, EMBED_TITLE_LIMIT)
        check("description", self.description, EMBED_DESCRIPTION_LIMIT)

        if len(self.fields) > EMBED_FIELDS_LIMIT:
            raise errors.EmbedOverbound("fields", len(self.fields), EMBED_FIELDS_LIMIT)

        if self.footer:
            check("footer text", self.footer.text, EMBED_FOOTER_LIMIT)

        if self.author:
            check("author name", self.author.name, EMBED_AUTHOR_LIMIT)

        for i, f in enumerate(self.fields):
            check(f"field {i} name", f.name, EMBED_FIELD_NAME_LIMIT)
            check(f"field {i} value", f.value, EMBED_FIELD_VALUE_LIMIT)

        total = self.length()
        if total > EMBED_TOTAL_LIMIT:
            raise errors.EmbedOverbound("total", total, EMBED_TOTAL_LIMIT)

    def to_dict(self) -> t.Dict[str, t.Any]:
        d: t.Dict[str, t.Any] = {"type": "rich"}

        for key in ("title", "description", "url", "color", "timestamp"):
            value = getattr(self, key)
            if value is not None:
                d[key] = value

        if self.footer:
            d["footer"] = self.footer.to_dict()
        if self.author:
            d["author"] = self.author.to_dict()
        if self.image:
            d["image"] = {"url": self.image}
        if self.thumbnail:
            d["thumbnail"] = {"url": self.thumbnail}
        if self.fields:
            d["fields"] = [f.to_dict() for f in self.fields]

        return d

    @classmethod
    def from_dict(cls, data: t.Mapping[str, t.Any]) -> "Embed":
        footer = data.get("footer")
        author = data.get("author")

        return cls(
            title=data.get("title"),
            description=data.get("description"),
            url=data.get("url"),
            color=data.get("color"),
            timestamp=data.get("timestamp"),
            footer=EmbedFooter(footer["text"], footer.get("icon_url")) if footer else None,
            author=EmbedAuthor(author["name"], author.get("url"), author.get("icon_url")) if author else None,
            image=(data.get("image") or {}).get("url"),
            thumbnail=(data.get("thumbnail") or {}).get("url"),
            fields=[
                EmbedField(f["name"], f["value"], f.get("inline", False))
                for f in data.get("fields", ())
            ],
        )


@dataclass
class AllowedMentions:
    parse: t.List[str] = field(default_factory=list)
    users: t.List[Snowflake] = field(default_factory=list)
    roles: t.List[Snowflake] = field(default_factory=list)
    replied_user: t.Optional[bool] = None

    @classmethod
    def none(cls) -> "AllowedMentions":
        return cls()

    def validate(self) -> None:
        if len(self.users) > MENTIONS_LIMIT:
            raise errors.ValidationError(f"allowed mentions has {len(self.users)} users, limit is {MENTIONS_LIMIT}")

        if len(self.roles) > MENTIONS_LIMIT:
            raise errors.ValidationError(f"allowed mentions has {len(self.roles)} roles, limit is {MENTIONS_LIMIT}")

        if self.users and PARSE_USERS in self.parse:
            raise errors.ValidationError("parse 'users' conflicts with an explicit users list")

        if self.roles and PARSE_ROLES in self.parse:
            raise errors.ValidationError("parse 'roles' conflicts with an explicit roles list")

    def to_dict(self) -> t.Dict[str, t.Any]:
        d: t.Dict[str, t.Any] = {"parse": list(self.parse)}

        if self.users:
            d["users"] = [str(u) for u in self.users]
        if self.roles:
            d["roles"] = [str(r) for r in self.roles]
        if self.replied_user is not None:
            d["replied_user"] = self.replied_user

        return d

    @classmethod
    def from_dict(cls, data: t.Mapping[str, t.Any]) -> "AllowedMentions":
        return cls(
            parse=list(data.get("parse", ())),
            users=[Snowflake(u) for u in data.get("users", ())],
            roles=[Snowflake(r) for r in data.get("roles", ())],
            replied_user=data.get("replied_user"),
        )


@dataclass
class MessageReference:
    message_id: Snowflake
    channel_id: t.Optional[Snowflake] = None
    guild_id: t.Optional[Snowflake] = None
    fail_if_not_exists: t.Optional[bool] = None

    def to_dict(self) -> t.Dict[str, t.Any]:
        d: t.Dict[str, t.Any] = {"message_id": str(self.message_id)}

        if self.channel_id is not None:
            d["channel_id"] = str(self.channel_id)
        if self.guild_id is not None:
            d["guild_id"] = str(self.guild_id)
        if self.fail_if_not_exists is not None:
            d["fail_if_not_exists"] = self.fail_if_not_exists

        return d


@dataclass
class SendMessageData:
    """The JSON part of a send message request.

    Files travel beside it in the multipart body, so `has_files` lets the
    emptiness check accept a message made only of attachments.
    """

    content: str = ""
    tts: bool = False
    embeds: t.List[Embed] = field(default_factory=list)
    allowed_mentions: t.Optional[AllowedMentions] = None
    reference: t.Optional[MessageReference] = None
    nonce: t.Optional[str] = None
    flags: int = 0

    def validate(self, *, has_files: bool = False) -> None:
        if not self.content and not self.embeds and not has_files:
            raise errors.EmptyMessage()

        if len(self.embeds) > MESSAGE_EMBEDS_LIMIT:
            raise errors.ValidationError(f"message has {len(self.embeds)} embeds, limit is {MESSAGE_EMBEDS_LIMIT}")

        for embed in self.embeds:
            embed.validate()

        if self.allowed_mentions is not None:
            self.allowed_mentions.validate()

    def to_dict(self) -> t.Dict[str, t.Any]:
        return strip_missing({
            "content": self.content or MISSING,
            "tts": self.tts or MISSING,
            "embeds": [e.to_dict() for e in self.embeds] or MISSING,
            "allowed_mentions": self.allowed_mentions.to_dict() if self.allowed_mentions else MISSING,
            "message_reference": self.reference.to_dict() if self.reference else MISSING,
            "nonce": self.nonce or MISSING,
            "flags": self.flags or MISSING,
        })

    @classmethod
    def from_dict(cls, data: t.Mapping[str, t.Any]) -> "SendMessageData":
        mentions = data.get("allowed_mentions")
        ref = data.get("message_reference")

        return cls(
            content=data.get("content", ""),
            tts=data.get("tts", False),
            embeds=[Embed.from_dict(e) for e in data.get("embeds", ())],
            allowed_mentions=AllowedMentions.from_dict(mentions) if mentions is not None else None,
            reference=MessageReference(
                Snowflake(ref["message_id"]),
                Snowflake(ref["channel_id"]) if "channel_id" in ref else None,
                Snowflake(ref["guild_id"]) if "guild_id" in ref else None,
                ref.get("fail_if_not_exists"),
            ) if ref else None,
            nonce=data.get("nonce"),
            flags=data.get("flags", 0),
        )
