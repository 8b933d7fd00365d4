"""HTML character reference decoding for extracted titles."""

from __future__ import annotations

import re
from typing import Dict

NAMED_ENTITIES: Dict[str, str] = {
    "amp": "&",
    "lt": "<",
    "gt": ">",
    "quot": '"',
    "apos": "'",
    "nbsp": "\u00a0",
    "lsquo": "‘",
    "rsquo": "’",
    "ldquo": "“",
    "rdquo": "”",
    "ndash": "–",
    "mdash": "—",
    "hellip": "…",
    "bull": "•",
}

_ENTITY_RE = re.compile(r"&(?:#([0-9]{1,7})|#[xX]([0-9a-fA-F]{1,6})|([a-zA-Z]+));")


def _codepoint(value: int, original: str) -> str:
    if value <= 0 or value > 0x10FFFF or 0xD800 <= value <= 0xDFFF:
        return original
    return chr(value)


def _replace(match: "re.Match[str]") -> str:
    decimal, hexadecimal, name = match.groups()
    if decimal is not None:
        return _codepoint(int(decimal), match.group(0))
    if hexadecimal is not None:
        return _codepoint(int(hexadecimal, 16), match.group(0))
    return NAMED_ENTITIES.get(name, match.group(0))


def decode_entities(text: str) -> str:
    """Decode the named entities in NAMED_ENTITIES plus numeric references.

    Single pass: ``&amp;lt;`` becomes ``&lt;``, not ``<``. Unknown names and
    out-of-range code points are left as written.
    """

    if not text or "&" not in text:
        return text or ""
    return _ENTITY_RE.sub(_replace, text)


__all__ = ["NAMED_ENTITIES", "decode_entities"]
