"""Reversible short code encoding for stored URL ids.

Short codes are produced by the ``hashids`` algorithm over a base62 alphabet,
salted with a secret so that sequential ids do not produce guessable codes.

Key Behaviours
===============
- ``encode`` is deterministic for a given salt and minimum length.
- ``decode`` is the exact inverse of ``encode`` and returns ``None`` for
  anything that ``encode`` could not have produced.
- Neither method performs I/O.

Example::

    >>> encoder = ShortCodeEncoder(salt="my-secret", min_length=7)
    >>> code = encoder.encode(1)
    >>> encoder.decode(code)
    1
    >>> encoder.decode("$$$") is None
    True
"""

import logging
import re
import string

from hashids import Hashids

from shortener.config import Settings

__all__ = ["SHORT_CODE_ALPHABET", "ShortCodeEncoder"]

SHORT_CODE_ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits

_SHORT_CODE_PATTERN = re.compile(r"^[0-9a-zA-Z]+$")

logger = logging.getLogger("shortener.encoder")


class ShortCodeEncoder:
    """Bijection between non-negative integer ids and base62 short codes."""

    def __init__(self, salt: str, min_length: int = 7) -> None:
        if not isinstance(salt, str) or not salt:
            raise ValueError("salt must be a non-empty string")
        if min_length < 0:
            raise ValueError(f"min_length must be non-negative, got {min_length!r}")
        self._min_length = min_length
        self._hashids = Hashids(salt=salt, min_length=min_length, alphabet=SHORT_CODE_ALPHABET)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ShortCodeEncoder":
        return cls(salt=settings.HASHIDS_SALT, min_length=settings.HASHIDS_MIN_LENGTH)

    @property
    def min_length(self) -> int:
        return self._min_length

    def encode(self, short_url_id: int) -> str:
        """Encode a stored id into its short code.

        Raises:
            ValueError: If the id is not a non-negative integer.
        """
        if isinstance(short_url_id, bool) or not isinstance(short_url_id, int):
            raise ValueError(f"id must be an integer, got {type(short_url_id).__name__}")
        if short_url_id < 0:
            raise ValueError(f"id must be non-negative, got {short_url_id}")
        return self._hashids.encode(short_url_id)

    def decode(self, code: str) -> int | None:
        """Decode a short code back into the id it was produced from.

        Returns None when the code is empty, uses characters outside the
        alphabet, is shorter than the configured minimum length, or does not
        round-trip to exactly one id.
        """
        if not isinstance(code, str) or not code:
            return None
        if len(code) < self._min_length or not _SHORT_CODE_PATTERN.match(code):
            return None

        try:
            decoded = self._hashids.decode(code)
        except (ValueError, IndexError) as exc:
            logger.debug(f"Short code {code!r} could not be decoded: {exc}")
            return None

        if len(decoded) != 1:
            return None
        return decoded[0]
