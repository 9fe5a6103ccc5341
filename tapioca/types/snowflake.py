import typing as t

# Ids arrive as decimal strings in JSON, wrap them with
# `tapioca.snowflake.Snowflake` to get integer semantics.
Snowflake = t.NewType("Snowflake", str)
