import enum
import functools
import operator


class Intents(enum.IntFlag):
    """Gateway intents, sent with Identify to pick which events arrive."""

    GUILDS                          = 1 << 0
    GUILD_MEMBERS                   = 1 << 1
    GUILD_MODERATION                = 1 << 2
    GUILD_EMOJIS_AND_STICKERS       = 1 << 3
    GUILD_INTEGRATIONS              = 1 << 4
    GUILD_WEBHOOKS                  = 1 << 5
    GUILD_INVITES                   = 1 << 6
    GUILD_VOICE_STATES              = 1 << 7
    GUILD_PRESENCES                 = 1 << 8
    GUILD_MESSAGES                  = 1 << 9
    GUILD_MESSAGE_REACTIONS         = 1 << 10
    GUILD_MESSAGE_TYPING            = 1 << 11
    DIRECT_MESSAGES                 = 1 << 12
    DIRECT_MESSAGE_REACTIONS        = 1 << 13
    DIRECT_MESSAGE_TYPING           = 1 << 14
    MESSAGE_CONTENT                 = 1 << 15
    GUILD_SCHEDULED_EVENTS          = 1 << 16
    AUTO_MODERATION_CONFIGURATION   = 1 << 20
    AUTO_MODERATION_EXECUTION       = 1 << 21

    @classmethod
    def none(cls) -> "Intents":
        return cls(0)

    @classmethod
    def all(cls) -> "Intents":
        return functools.reduce(operator.or_, cls.__members__.values(), cls(0))

    @classmethod
    def privileged(cls) -> "Intents":
        return cls.GUILD_MEMBERS | cls.GUILD_PRESENCES | cls.MESSAGE_CONTENT

    @classmethod
    def default(cls) -> "Intents":
        """Everything that does not need to be enabled in the developer portal."""
        return cls.all() & ~cls.privileged()
