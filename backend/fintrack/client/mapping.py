"""Client-side column mapping: guess roles from header names."""

from __future__ import annotations

import re

# Checked in order; a header is assigned to at most one role
ROLE_PATTERNS = (
    ("date", re.compile(r"fecha|date|day", re.IGNORECASE)),
    ("amount", re.compile(r"monto|amount|valor|value|total|importe", re.IGNORECASE)),
    ("description", re.compile(r"descripci[oó]n|description|concepto|note|memo", re.IGNORECASE)),
    ("type", re.compile(r"tipo|type", re.IGNORECASE)),
    ("category", re.compile(r"categor", re.IGNORECASE)),
    ("account", re.compile(r"cuenta|account", re.IGNORECASE)),
)


def guess_mapping(headers: list[str]) -> dict[str, str]:
    """Return role -> header for every role whose pattern matches a header."""
    mapping: dict[str, str] = {}
    taken: set[str] = set()
    for role, pattern in ROLE_PATTERNS:
        for header in headers:
            if header not in taken and pattern.search(header):
                mapping[role] = header
                taken.add(header)
                break
    return mapping


def missing_required(mapping: dict[str, str]) -> list[str]:
    return [role for role in ("date", "amount") if not mapping.get(role)]
