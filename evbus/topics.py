"""MQTT topic filter matching."""

from __future__ import annotations


def check_topic_matches(full_topic: str, wildcard_topic: str) -> bool:
    """Tell whether ``full_topic`` is matched by the filter ``wildcard_topic``.

    ``+`` matches one level, ``#`` matches the rest, and a trailing ``/#`` also
    matches zero further levels.
    """
    if full_topic == wildcard_topic:
        return True

    if wildcard_topic.endswith("/#") and check_topic_matches(full_topic, wildcard_topic[:-2]):
        return True

    full_split = full_topic.split("/")
    wildcard_split = wildcard_topic.split("/")

    for partno, part in enumerate(full_split):
        if len(wildcard_split) <= partno:
            return False
        wildcard_part = wildcard_split[partno]
        if part == wildcard_part or wildcard_part == "+":
            continue
        return wildcard_part == "#"

    return len(full_split) == len(wildcard_split)