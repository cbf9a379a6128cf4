"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Platform(StrEnum):
    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"


class MatchOutcome(StrEnum):
    NO_MATCH = "no_match"
    MATCHED = "matched"
    EMPTY = "empty"  # keyword matched a flow that has no response text
