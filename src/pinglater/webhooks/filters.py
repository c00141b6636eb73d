"""Filter evaluation for message events.

A destination narrows which messages reach it with up to four filters:
chat type, a phone whitelist or blacklist, group JIDs and group names.
Every present filter must pass; an empty filter never restricts.
"""

from __future__ import annotations

import re

from pinglater.models import Destination, MessageData

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    """Strip everything except digits, e.g. "+1 234-567-8900" -> "12345678900"."""
    return _NON_DIGITS.sub("", phone)


def phone_matches(phone: str, phone_list: list[str]) -> bool:
    """Check whether a phone number is in a list, comparing digits only."""
    normalized = normalize_phone(phone)
    return any(normalize_phone(candidate) == normalized for candidate in phone_list)


def _matches_chat_type(destination: Destination, message: MessageData) -> bool:
    if destination.filter_chat_type == "individual":
        return not message.is_group
    if destination.filter_chat_type == "group":
        return message.is_group
    return True


def _matches_phone_list(destination: Destination, message: MessageData) -> bool:
    if not destination.filter_phone_numbers:
        return True
    listed = phone_matches(message.sender_phone, destination.filter_phone_numbers)
    if destination.filter_phone_match_type == "blacklist":
        return not listed
    return listed


def _matches_group_jids(destination: Destination, message: MessageData) -> bool:
    if not destination.filter_group_jids or not message.is_group:
        return True
    jid = message.group_jid.lower()
    return any(candidate.lower() == jid for candidate in destination.filter_group_jids)


def _matches_group_names(destination: Destination, message: MessageData) -> bool:
    if not destination.filter_group_names or not message.is_group:
        return True
    name = (message.group_name or "").lower()
    return any(candidate.lower() == name for candidate in destination.filter_group_names)


def matches_filters(destination: Destination, message: MessageData) -> bool:
    """Decide whether a message event should be delivered to a destination.

    Filters are checked in order and the first rejection wins:

    1. Chat type: "individual" rejects group messages, "group" rejects
       individual ones.
    2. Phone list: a whitelist rejects senders not on it, a blacklist
       rejects senders on it. Numbers are compared by digits only.
    3. Group JIDs: group messages must come from a listed group.
    4. Group names: group messages must carry a listed name.

    Group filters are ignored for individual messages.
    """
    return (
        _matches_chat_type(destination, message)
        and _matches_phone_list(destination, message)
        and _matches_group_jids(destination, message)
        and _matches_group_names(destination, message)
    )
