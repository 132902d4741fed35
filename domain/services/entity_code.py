"""
Entity codes: short, checksummed, human-typeable identifiers.

Layout ``PREFIX-TTTTT-SSSSC-EEEE-YY``:

- ``PREFIX`` 1-4 upper-case letters naming the entity kind (``PG`` for payments)
- ``TTTTT`` seconds since 2023-01-01T00:00:00Z in base 32 (wraps every ~388 days)
- ``SSSS``  20 bits: millisecond of the second (10) | worker id (8) | sequence (2)
- ``C``     HMAC checksum character over every other component
- ``EEEE``  HMAC fragment of the related entity id, ``2222`` when there is none
- ``YY``    two-digit UTC year

The alphabet drops 0/O and 1/I/L so codes survive being read over the phone.
Codes are unique per (second, millisecond, worker, sequence) within a process.
Across processes a code repeats only when two workers share an id and issue
for the same entity in the same millisecond slot; pin ids with
``StaticWorkerIdSource`` where that must never happen, see ``WorkerIdSource``.
"""
from __future__ import annotations

import hashlib
import hmac
import os
import re
import socket
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from domain.payment.exceptions import CodeValidationFailure


ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
BASE = len(ALPHABET)
EPOCH_MS = 1672531200000  # 2023-01-01T00:00:00Z

TIME_LENGTH = 5
SEQ_LENGTH = 4
ENTITY_LENGTH = 4
MAX_PREFIX_LENGTH = 4

MILLIS_BITS = 10
WORKER_BITS = 8
SEQUENCE_BITS = 2
MAX_WORKER_ID = (1 << WORKER_BITS) - 1
MAX_SEQUENCE = (1 << SEQUENCE_BITS) - 1

NO_ENTITY_FRAGMENT = ALPHABET[0] * ENTITY_LENGTH
ENTITY_CACHE_LIMIT = 10_000
MAX_BULK = 10_000

_CHARSET = re.escape(ALPHABET)
CODE_PATTERN = re.compile(
    rf"^(?P<prefix>[A-Z]{{1,{MAX_PREFIX_LENGTH}}})"
    rf"-(?P<time>[{_CHARSET}]{{{TIME_LENGTH}}})"
    rf"-(?P<seq>[{_CHARSET}]{{{SEQ_LENGTH}}})(?P<checksum>[{_CHARSET}])"
    rf"-(?P<entity>[{_CHARSET}]{{{ENTITY_LENGTH}}})"
    rf"-(?P<year>\d{{2}})$"
)
_PREFIX_RE = re.compile(r"^[A-Z]+$")
_INDEX = {ch: i for i, ch in enumerate(ALPHABET)}


def encode_base32(value: int, length: int) -> str:
    """Fixed-width encoding; ``value`` is reduced modulo ``BASE ** length``."""
    value %= BASE ** length
    chars = []
    for _ in range(length):
        value, rem = divmod(value, BASE)
        chars.append(ALPHABET[rem])
    return "".join(reversed(chars))


def decode_base32(text: str) -> int:
    value = 0
    for ch in text:
        value = value * BASE + _INDEX[ch]
    return value


def _system_clock_ms() -> int:
    return time.time_ns() // 1_000_000


class WorkerIdSource(Protocol):
    """Supplies the 8-bit worker id mixed into every code.

    Swap in a coordinator-backed source (e.g. a lease row in the database)
    where hosts must never share an id.
    """

    def worker_id(self) -> int: ...


class HostWorkerIdSource:
    """Hashes hostname, MAC address and pid once per process."""

    def __init__(self) -> None:
        self._cached: Optional[int] = None

    def worker_id(self) -> int:
        if self._cached is None:
            seed = f"{socket.gethostname()}:{uuid.getnode()}:{os.getpid()}"
            digest = hashlib.sha256(seed.encode("utf-8")).digest()
            self._cached = int.from_bytes(digest[:4], "big") & MAX_WORKER_ID
        return self._cached


class StaticWorkerIdSource:
    def __init__(self, worker_id: int) -> None:
        if not 0 <= worker_id <= MAX_WORKER_ID:
            raise ValueError(f"worker_id must be within 0..{MAX_WORKER_ID}")
        self._worker_id = worker_id

    def worker_id(self) -> int:
        return self._worker_id


@dataclass(frozen=True)
class EntityCodeParts:
    prefix: str
    time_component: str
    seq_component: str
    checksum: str
    entity_fragment: str
    year: str

    @property
    def seconds_since_epoch(self) -> int:
        return decode_base32(self.time_component)

    @property
    def millisecond(self) -> int:
        return decode_base32(self.seq_component) >> (WORKER_BITS + SEQUENCE_BITS)

    @property
    def worker_id(self) -> int:
        return (decode_base32(self.seq_component) >> SEQUENCE_BITS) & MAX_WORKER_ID

    @property
    def sequence(self) -> int:
        return decode_base32(self.seq_component) & MAX_SEQUENCE

    @property
    def has_entity(self) -> bool:
        return self.entity_fragment != NO_ENTITY_FRAGMENT


class CodeGenerator:
    """Generates and validates entity codes for one process.

    The generator owns its clock state; share one instance per process
    so the sequence is not reset between calls.
    """

    def __init__(
        self,
        secret: str,
        *,
        worker_source: Optional[WorkerIdSource] = None,
        clock: Callable[[], int] = _system_clock_ms,
    ) -> None:
        if not secret:
            raise ValueError("secret is required")
        self._secret = secret.encode("utf-8")
        self._worker_source = worker_source or HostWorkerIdSource()
        self._clock = clock
        self._lock = threading.Lock()
        self._last_timestamp = -1
        self._sequence = 0
        self._entity_cache: dict[str, str] = {}

    @staticmethod
    def normalize_prefix(prefix: str) -> str:
        normalized = (prefix or "").strip().upper()[:MAX_PREFIX_LENGTH]
        if not normalized or not _PREFIX_RE.match(normalized):
            raise ValueError(f"prefix must contain letters only: {prefix!r}")
        return normalized

    def generate(self, entity_id: Optional[str] = None, prefix: str = "RA") -> str:
        normalized = self.normalize_prefix(prefix)
        timestamp, sequence = self._next_slot()
        worker_id = self._worker_source.worker_id() & MAX_WORKER_ID

        elapsed_ms = timestamp - EPOCH_MS
        seconds, millis = divmod(elapsed_ms, 1000)
        time_component = encode_base32(seconds, TIME_LENGTH)
        packed = (millis << (WORKER_BITS + SEQUENCE_BITS)) | (worker_id << SEQUENCE_BITS) | sequence
        seq_component = encode_base32(packed, SEQ_LENGTH)
        entity_fragment = self._entity_fragment(entity_id)
        year = f"{datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).year % 100:02d}"

        checksum = self._checksum(normalized, time_component, seq_component, entity_fragment, year)
        return f"{normalized}-{time_component}-{seq_component}{checksum}-{entity_fragment}-{year}"

    def generate_bulk(self, count: int, entity_id: Optional[str] = None, prefix: str = "RA") -> list[str]:
        if count <= 0:
            return []
        if count > MAX_BULK:
            raise ValueError(f"count must not exceed {MAX_BULK}")
        return [self.generate(entity_id, prefix) for _ in range(count)]

    def parse(self, code: str) -> EntityCodeParts:
        """Split a code into its components; raises CodeValidationFailure."""
        if not isinstance(code, str):
            raise CodeValidationFailure(repr(code), "not a string")
        match = CODE_PATTERN.match(code)
        if match is None:
            raise CodeValidationFailure(code, "malformed")
        parts = EntityCodeParts(
            prefix=match.group("prefix"),
            time_component=match.group("time"),
            seq_component=match.group("seq"),
            checksum=match.group("checksum"),
            entity_fragment=match.group("entity"),
            year=match.group("year"),
        )
        expected = self._checksum(
            parts.prefix, parts.time_component, parts.seq_component, parts.entity_fragment, parts.year
        )
        if not hmac.compare_digest(expected, parts.checksum):
            raise CodeValidationFailure(code, "checksum mismatch")
        return parts

    def ensure_valid(self, code: str, expected_prefix: Optional[str] = None) -> EntityCodeParts:
        parts = self.parse(code)
        if expected_prefix is not None and parts.prefix != self.normalize_prefix(expected_prefix):
            raise CodeValidationFailure(code, "unexpected prefix")
        return parts

    def validate(self, code: str, expected_prefix: Optional[str] = None) -> bool:
        try:
            self.ensure_valid(code, expected_prefix)
        except (CodeValidationFailure, ValueError):
            return False
        return True

    def belongs_to(self, code: str, entity_id: str) -> bool:
        """True when ``code`` is valid and was issued for ``entity_id``."""
        try:
            parts = self.parse(code)
        except CodeValidationFailure:
            return False
        return hmac.compare_digest(parts.entity_fragment, self._entity_fragment(entity_id))

    # ----- internals -----

    def _next_slot(self) -> tuple[int, int]:
        with self._lock:
            timestamp = self._clock()
            # clock went backwards: hold until it catches up
            while timestamp < self._last_timestamp:
                timestamp = self._clock()

            if timestamp == self._last_timestamp:
                self._sequence = (self._sequence + 1) & MAX_SEQUENCE
                if self._sequence == 0:
                    while timestamp <= self._last_timestamp:
                        timestamp = self._clock()
            else:
                self._sequence = 0

            self._last_timestamp = timestamp
            return timestamp, self._sequence

    def _entity_fragment(self, entity_id: Optional[str]) -> str:
        if entity_id is None or entity_id == "":
            return NO_ENTITY_FRAGMENT
        key = str(entity_id)
        cached = self._entity_cache.get(key)
        if cached is not None:
            return cached
        digest = hmac.new(self._secret, key.encode("utf-8"), hashlib.sha256).digest()
        fragment = "".join(ALPHABET[b % BASE] for b in digest[:ENTITY_LENGTH])
        if len(self._entity_cache) >= ENTITY_CACHE_LIMIT:
            self._entity_cache.clear()
        self._entity_cache[key] = fragment
        return fragment

    def _checksum(self, prefix: str, time_component: str, seq_component: str, entity_fragment: str, year: str) -> str:
        message = f"{prefix}|{time_component}{seq_component}{entity_fragment}|{year}".encode("utf-8")
        digest = hmac.new(self._secret, message, hashlib.sha256).digest()
        return ALPHABET[int.from_bytes(digest[:2], "big") % BASE]
