"""Stable, sortable identifiers for catalog records and attempts."""

from ulid import ULID


def generate_id(prefix: str) -> str:
    """Generate a ULID-based id such as ``att_01HV...``."""
    return f"{prefix}_{ULID()}"


def new_attempt_id() -> str:
    return generate_id("att")


def new_concept_id() -> str:
    return generate_id("con")


def new_item_id() -> str:
    return generate_id("itm")


def new_session_id() -> str:
    return generate_id("ses")
