import datetime

import pytest

from tapioca import ExponentialBackoff, Intents
from tapioca.snowflake import DISCORD_EPOCH, Snowflake, UserID

# 2016-04-30 11:18:25.796 UTC
ID = 175928847299117063


def test_parses_strings_and_ints():
    assert Snowflake("175928847299117063") == ID
    assert Snowflake(ID) == ID
    assert str(Snowflake(ID)) == "175928847299117063"
    assert repr(UserID(ID)) == "UserID(175928847299117063)"


@pytest.mark.parametrize("value", ["-1", str(1 << 64), "abc", ""])
def test_invalid_snowflakes(value):
    with pytest.raises(ValueError):
        Snowflake(value)


def test_fields():
    s = Snowflake(ID)

    assert s.timestamp == 1462015105796
    assert s.created_at == datetime.datetime(2016, 4, 30, 11, 18, 25, 796000, tzinfo=datetime.timezone.utc)
    assert s.worker_id == 1
    assert s.process_id == 0
    assert s.increment == 7


def test_from_datetime():
    when = datetime.datetime(2020, 1, 1, tzinfo=datetime.timezone.utc)
    s = Snowflake.from_datetime(when)

    assert s.created_at == when
    assert s.increment == 0
    assert Snowflake.from_datetime(datetime.datetime(2000, 1, 1, tzinfo=datetime.timezone.utc)) == 0
    assert Snowflake(0).timestamp == DISCORD_EPOCH


def test_ordering_follows_time():
    older = Snowflake.from_datetime(datetime.datetime(2019, 1, 1, tzinfo=datetime.timezone.utc))
    newer = Snowflake.from_datetime(datetime.datetime(2021, 1, 1, tzinfo=datetime.timezone.utc))

    assert older < newer
    assert max([newer, older]) is newer


def test_backoff_bounds():
    backoff = ExponentialBackoff(1.0, 10.0, seed=3)
    delays = [backoff.delay() for _ in range(20)]

    assert all(1.0 <= d <= 10.0 for d in delays)
    assert backoff.attempts == 4

    backoff.reset()
    assert backoff.attempts == 0
    assert backoff.delay() == 1.0


def test_backoff_rejects_bad_bounds():
    with pytest.raises(ValueError):
        ExponentialBackoff(0, 10)

    with pytest.raises(ValueError):
        ExponentialBackoff(5, 1)


def test_default_intents_are_not_privileged():
    default = Intents.default()

    assert not default & Intents.privileged()
    assert default & Intents.GUILDS
    assert Intents.all() & Intents.MESSAGE_CONTENT
    assert Intents.none() == 0
