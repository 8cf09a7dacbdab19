"""Deterministic region identifiers.

TIM addresses paragraphs and areas by short alphanumeric ids. timsync
derives them from the owning document's stable key and the region's
declared name or ordinal, so an unchanged project always reproduces the
same ids and the server keeps the per-region state attached to them.

Ids are 22 characters: 21 base62 characters of a keyed BLAKE2b digest
(about 125 bits) followed by the Luhn-style check character TIM uses for
paragraph ids.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

CHARSET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
BODY_LENGTH = 21

_KEY = b"timsync/region-id/v1"
_SPACE = len(CHARSET) ** BODY_LENGTH


def _luhn_checksum(value: str) -> int:
    acc = 0
    for i in range(len(value) - 1, -1, -1):
        digit = CHARSET.index(value[i])
        acc += digit * 2 if i % 2 == 0 else digit
    return acc % len(CHARSET)


def check_char(body: str) -> str:
    """Check character appended to a paragraph id body."""
    digit = _luhn_checksum(body + CHARSET[0])
    return CHARSET[0] if digit == 0 else CHARSET[len(CHARSET) - digit]


def is_valid_id(value: str) -> bool:
    """True if ``value`` is a well-formed id with a correct check character."""
    if len(value) < 2 or any(c not in CHARSET for c in value):
        return False
    return check_char(value[:-1]) == value[-1]


def _encode(number: int) -> str:
    chars = []
    for _ in range(BODY_LENGTH):
        number, digit = divmod(number, len(CHARSET))
        chars.append(CHARSET[digit])
    return "".join(reversed(chars))


def region_id(stable_key: str, region: str) -> str:
    """Derive the id of ``region`` inside the document ``stable_key``.

    Args:
        stable_key: Stable source key of the owning document.
        region: Region discriminator, e.g. ``name:intro`` or ``anon:0``.

    Returns:
        A 22 character id; equal inputs always give equal ids.
    """
    digest = hashlib.blake2b(
        stable_key.encode("utf-8") + b"\x00" + region.encode("utf-8"),
        key=_KEY,
        digest_size=16,
    ).digest()
    body = _encode(int.from_bytes(digest, "big") % _SPACE)
    return body + check_char(body)


@dataclass(frozen=True)
class Region:
    """A region encountered while rendering one document."""

    kind: str
    discriminator: str
    id: str
    name: str | None = None


class RegionIdAssigner:
    """Hand out region ids for one document render.

    Anonymous regions get ordinals in encounter order, counted separately
    per kind. A name seen again gets an occurrence suffix so both regions
    keep distinct ids; the first occurrence is unaffected.

    Args:
        stable_key: Stable source key of the document being rendered.
    """

    def __init__(self, stable_key: str) -> None:
        self.stable_key = stable_key
        self.regions: list[Region] = []
        self._ordinals: dict[str, int] = {}
        self._seen: dict[str, int] = {}

    def _assign(self, kind: str, discriminator: str, name: str | None) -> Region:
        count = self._seen.get(discriminator, 0)
        self._seen[discriminator] = count + 1
        if count:
            discriminator = f"{discriminator}#{count}"
        region = Region(
            kind=kind,
            discriminator=discriminator,
            id=region_id(self.stable_key, discriminator),
            name=name,
        )
        self.regions.append(region)
        return region

    def anonymous(self, kind: str = "area") -> Region:
        ordinal = self._ordinals.get(kind, 0)
        self._ordinals[kind] = ordinal + 1
        prefix = "anon" if kind == "area" else f"{kind}-anon"
        return self._assign(kind, f"{prefix}:{ordinal}", None)

    def named(self, name: str, kind: str = "area") -> Region:
        prefix = "name" if kind == "area" else f"{kind}-name"
        return self._assign(kind, f"{prefix}:{name}", name)

    def task(self, uid: str) -> Region:
        return self._assign("task", f"task:{uid}", uid)
