import pytest

import tapioca
from tapioca.image import Image, to_data_uri
from tapioca.message import (
    AllowedMentions,
    Embed,
    EmbedAuthor,
    EmbedField,
    EmbedFooter,
    MessageReference,
    SendMessageData,
)
from tapioca.snowflake import Snowflake

PNG = b"\x89PNG\r\n\x1a\n" + b"\x01" * 16
WEBP = b"RIFF\x00\x00\x00\x00WEBPVP8 "


def test_embed_within_limits():
    embed = Embed(
        title="t" * 256,
        description="d" * 4096,
        footer=EmbedFooter("f" * 100),
        fields=[EmbedField("n", "v" * 1024, inline=True)],
    )

    embed.validate()
    assert embed.length() == 256 + 4096 + 100 + 1 + 1024


@pytest.mark.parametrize(
    "embed, field",
    [
        (Embed(title="t" * 257), "title"),
        (Embed(description="d" * 4097), "description"),
        (Embed(fields=[EmbedField("n", "v")] * 26), "fields"),
        (Embed(fields=[EmbedField("n" * 257, "v")]), "field 0 name"),
        (Embed(fields=[EmbedField("n", "v"), EmbedField("n", "v" * 1025)]), "field 1 value"),
        (Embed(footer=EmbedFooter("f" * 2049)), "footer text"),
        (Embed(author=EmbedAuthor("a" * 257)), "author name"),
        (Embed(description="d" * 4000, fields=[EmbedField("n" * 200, "v" * 1000)] * 2), "total"),
    ],
)
def test_embed_overbound(embed, field):
    with pytest.raises(tapioca.errors.EmbedOverbound) as info:
        embed.validate()

    assert info.value.field == field
    assert info.value.size > info.value.limit


def test_embed_dict():
    embed = Embed(
        title="hello",
        color=0xFF00FF,
        image="https://example.com/a.png",
        author=EmbedAuthor("me", url="https://example.com"),
        fields=[EmbedField("a", "b")],
    )

    data = embed.to_dict()

    assert data == {
        "type": "rich",
        "title": "hello",
        "color": 0xFF00FF,
        "author": {"name": "me", "url": "https://example.com"},
        "image": {"url": "https://example.com/a.png"},
        "fields": [{"name": "a", "value": "b", "inline": False}],
    }
    assert Embed.from_dict(data) == embed


def test_allowed_mentions_limits():
    AllowedMentions(users=[Snowflake(i) for i in range(100)]).validate()

    with pytest.raises(tapioca.errors.ValidationError):
        AllowedMentions(users=[Snowflake(i) for i in range(101)]).validate()

    with pytest.raises(tapioca.errors.ValidationError):
        AllowedMentions(roles=[Snowflake(i) for i in range(101)]).validate()


def test_allowed_mentions_parse_conflicts():
    with pytest.raises(tapioca.errors.ValidationError):
        AllowedMentions(parse=["users"], users=[Snowflake(1)]).validate()

    with pytest.raises(tapioca.errors.ValidationError):
        AllowedMentions(parse=["roles"], roles=[Snowflake(1)]).validate()

    AllowedMentions(parse=["everyone", "roles"], users=[Snowflake(1)]).validate()


def test_no_mentions_sends_empty_parse():
    assert AllowedMentions.none().to_dict() == {"parse": []}


def test_empty_message():
    with pytest.raises(tapioca.errors.EmptyMessage):
        SendMessageData().validate()

    SendMessageData().validate(has_files=True)
    SendMessageData(embeds=[Embed(title="only an embed")]).validate()


def test_too_many_embeds():
    with pytest.raises(tapioca.errors.ValidationError):
        SendMessageData(embeds=[Embed(title="x")] * 11).validate()


def test_validation_errors_are_value_errors():
    with pytest.raises(ValueError):
        SendMessageData().validate()


def test_send_message_data_dict():
    data = SendMessageData(
        content="hi",
        allowed_mentions=AllowedMentions(users=[Snowflake(5)], replied_user=False),
        reference=MessageReference(Snowflake(9), channel_id=Snowflake(8)),
        nonce="n1",
    )

    payload = data.to_dict()

    assert payload == {
        "content": "hi",
        "allowed_mentions": {"parse": [], "users": ["5"], "replied_user": False},
        "message_reference": {"message_id": "9", "channel_id": "8"},
        "nonce": "n1",
    }
    assert SendMessageData.from_dict(payload) == data


def test_image_data_uri():
    image = Image(PNG)
    uri = image.encode()

    assert image.content_type == "image/png"
    assert uri.startswith("data:image/png;base64,")
    assert Image.decode(uri) == image
    assert to_data_uri(PNG) == uri
    assert to_data_uri(None) is None


@pytest.mark.parametrize("uri", ["image/png;base64,AAAA", "data:image/png,AAAA", "data:image/png;base64,@@@"])
def test_image_invalid_uri(uri):
    with pytest.raises(tapioca.errors.InvalidImage):
        Image.decode(uri)


def test_image_validate():
    Image(PNG).validate(max_size=1024)

    with pytest.raises(tapioca.errors.ImageTooLarge) as info:
        Image(PNG).validate(max_size=8)

    assert info.value.size == len(PNG)

    # webp is sniffed but Discord does not take it for avatars
    assert Image(WEBP).content_type == "image/webp"
    with pytest.raises(tapioca.errors.InvalidImage):
        Image(WEBP).validate()
