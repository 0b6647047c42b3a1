"""Structured identifiers: hotel ids, account ids and booking references.

Each identifier family is an explicit value type with a lossless string
codec, so a reader can recover provenance from the id alone:

* hotel id - 10 digits, allocated from a single atomic counter.
* account id - ``<role code:2><account type:1><hotel id:10><sequence:5>``,
  the sequence coming from a counter per (role code, hotel id).
* booking reference - ``BOOK<entity id><YYYYMMDD><accommodation id><suffix:4>``.
  Generated references zero-pad both ids to 10 digits so that parsing is
  unambiguous; the random suffix can collide, so persisting a reference is
  retried with a fresh suffix a bounded number of times.
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Callable, Optional, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hotel_pms.core.config import settings
from hotel_pms.core.exceptions import GenerationExhausted, InvalidInput
from hotel_pms.models.account import SequenceCounter

logger = logging.getLogger(__name__)

T = TypeVar("T")

HOTEL_ID_WIDTH = 10
ACCOUNT_SEQUENCE_WIDTH = 5
ACCOUNT_ID_WIDTH = 2 + 1 + HOTEL_ID_WIDTH + ACCOUNT_SEQUENCE_WIDTH
REFERENCE_ID_WIDTH = 10
REFERENCE_PREFIX = "BOOK"

_HOTEL_ID_RE = re.compile(r"[0-9]{10}")
_ACCOUNT_ID_RE = re.compile(r"([0-9]{2})([0-9])([0-9]{10})([0-9]{5})")
_REFERENCE_RE = re.compile(r"BOOK([0-9]+)")


class AccountRole(str, Enum):
    """Two-digit role codes embedded in account ids."""

    HOTEL_ADMIN = "11"
    MANAGER = "12"
    FINANCE = "13"
    FRONT_DESK = "14"
    BOOKING_AGENT = "15"
    GATEKEEPER = "16"
    SUPPORT = "17"
    TECH_SUPPORT = "18"
    SERVICE_STAFF = "19"
    MAINTENANCE = "20"
    KITCHEN = "21"


def _parse_yyyymmdd(value: str) -> Optional[date]:
    try:
        return datetime.strptime(value, "%Y%m%d").date()
    except ValueError:
        return None


@dataclass(frozen=True)
class AccountId:
    role_code: str
    account_type_code: str
    hotel_id: str
    sequence: int

    kind = "account"

    def __str__(self) -> str:
        return (
            f"{self.role_code}{self.account_type_code}{self.hotel_id}"
            f"{self.sequence:0{ACCOUNT_SEQUENCE_WIDTH}d}"
        )

    @property
    def role(self) -> AccountRole:
        return AccountRole(self.role_code)

    @classmethod
    def parse(cls, value: object) -> Optional["AccountId"]:
        """Split an account id into its fields, or None if it is not one."""
        if not isinstance(value, str):
            return None
        match = _ACCOUNT_ID_RE.fullmatch(value)
        if not match:
            return None
        role_code, type_code, hotel_id, sequence = match.groups()
        if role_code not in AccountRole._value2member_map_ or int(sequence) == 0:
            return None
        return cls(role_code, type_code, hotel_id, int(sequence))


@dataclass(frozen=True)
class BookingReference:
    entity_id: int
    date: date
    accommodation_id: int
    random_suffix: str

    kind = "booking"

    def __str__(self) -> str:
        return (
            f"{REFERENCE_PREFIX}{self.entity_id:0{REFERENCE_ID_WIDTH}d}"
            f"{self.date:%Y%m%d}"
            f"{self.accommodation_id:0{REFERENCE_ID_WIDTH}d}"
            f"{self.random_suffix}"
        )

    @classmethod
    def parse(cls, value: object) -> Optional["BookingReference"]:
        """Recover the reference fields, or None for anything that is not one.

        Canonical (zero-padded) references split at fixed offsets. Older
        unpadded references are split at the leftmost position where the
        8-digit window is a real calendar date.
        """
        if not isinstance(value, str):
            return None
        match = _REFERENCE_RE.fullmatch(value)
        if not match:
            return None
        body = match.group(1)
        # entity(>=1) + date(8) + accommodation(>=1) + suffix(4)
        if len(body) < 14:
            return None

        suffix = body[-4:]
        head = body[:-4]
        if len(body) == 2 * REFERENCE_ID_WIDTH + 12:
            splits = [REFERENCE_ID_WIDTH]
        else:
            splits = range(1, len(head) - 8)

        for entity_len in splits:
            parsed_date = _parse_yyyymmdd(head[entity_len:entity_len + 8])
            accommodation = head[entity_len + 8:]
            if parsed_date is None or not accommodation:
                continue
            return cls(int(head[:entity_len]), parsed_date, int(accommodation), suffix)
        return None


def random_suffix() -> str:
    """Four random digits, 1000-9999."""
    return str(1000 + secrets.randbelow(9000))


def is_valid_hotel_id(value: object) -> bool:
    return isinstance(value, str) and bool(_HOTEL_ID_RE.fullmatch(value))


def parse_account_id(value: object) -> Optional[AccountId]:
    return AccountId.parse(value)


def parse_booking_reference(value: object) -> Optional[BookingReference]:
    return BookingReference.parse(value)


def is_valid_booking_reference(value: object) -> bool:
    return BookingReference.parse(value) is not None


def _is_reference_collision(exc: IntegrityError) -> bool:
    return "booking_reference" in str(getattr(exc, "orig", exc))


class IdentityService:
    """Mints identifiers against the store's atomic counters."""

    HOTEL_COUNTER = "hotel_id"

    def __init__(self, db: Session, suffix_source: Callable[[], str] = random_suffix):
        self.db = db
        self.suffix_source = suffix_source

    # ===== COUNTERS =====

    def _next_value(self, name: str, start: int) -> int:
        """Advance counter ``name`` by one and return the new value.

        The increment is a single UPDATE ... RETURNING, so the row lock it
        takes serializes concurrent allocations until the caller commits.
        """
        stmt = (
            update(SequenceCounter)
            .where(SequenceCounter.name == name)
            .values(value=SequenceCounter.value + 1)
            .returning(SequenceCounter.value)
        )
        value = self.db.execute(stmt).scalar_one_or_none()
        if value is not None:
            return value

        try:
            with self.db.begin_nested():
                self.db.add(SequenceCounter(name=name, value=start + 1))
            return start + 1
        except IntegrityError:
            # Another transaction created the counter first
            return self.db.execute(stmt).scalar_one()

    # ===== HOTEL IDS =====

    def generate_hotel_id(self) -> str:
        value = self._next_value(self.HOTEL_COUNTER, settings.hotel_id_start)
        if value >= 10 ** HOTEL_ID_WIDTH:
            raise GenerationExhausted("Hotel id space exhausted", {"last_value": value})
        return f"{value:0{HOTEL_ID_WIDTH}d}"

    # ===== ACCOUNT IDS =====

    def generate_account_id(self, role_code: str, account_type_code: str, hotel_id: str) -> AccountId:
        if role_code not in AccountRole._value2member_map_:
            raise InvalidInput(f"Unknown role code: {role_code}", {"role_code": role_code})
        type_ok = isinstance(account_type_code, str) and len(account_type_code) == 1 and account_type_code in "0123456789"
        if not type_ok:
            raise InvalidInput(
                f"Account type code must be one digit: {account_type_code}",
                {"account_type_code": account_type_code},
            )
        if not is_valid_hotel_id(hotel_id):
            raise InvalidInput(f"Invalid hotel id: {hotel_id}", {"hotel_id": hotel_id})

        sequence = self._next_value(f"account:{role_code}:{hotel_id}", 0)
        if sequence >= 10 ** ACCOUNT_SEQUENCE_WIDTH:
            raise GenerationExhausted(
                f"Account sequence exhausted for role {role_code} at hotel {hotel_id}",
                {"role_code": role_code, "hotel_id": hotel_id},
            )
        return AccountId(role_code, account_type_code, hotel_id, sequence)

    # ===== BOOKING REFERENCES =====

    def generate_booking_reference(
        self, entity_id: int, accommodation_id: int, on_date: date
    ) -> BookingReference:
        """Build a reference with a fresh random suffix. Does not check uniqueness."""
        if entity_id < 0 or accommodation_id < 0:
            raise InvalidInput("Reference ids must be non-negative")
        if entity_id >= 10 ** REFERENCE_ID_WIDTH or accommodation_id >= 10 ** REFERENCE_ID_WIDTH:
            raise InvalidInput(
                "Reference ids must fit in 10 digits",
                {"entity_id": entity_id, "accommodation_id": accommodation_id},
            )
        return BookingReference(entity_id, on_date, accommodation_id, self.suffix_source())

    def persist_with_reference(
        self,
        entity_id: int,
        accommodation_id: int,
        on_date: date,
        persist: Callable[[str], T],
    ) -> T:
        """Call ``persist(reference)`` until the reference is accepted.

        ``persist`` runs inside a savepoint; a unique violation on the
        booking reference rolls back just that attempt and retries with a new
        suffix. Any other integrity error propagates.
        """
        attempts = settings.booking_reference_max_attempts
        for attempt in range(1, attempts + 1):
            reference = str(self.generate_booking_reference(entity_id, accommodation_id, on_date))
            try:
                with self.db.begin_nested():
                    return persist(reference)
            except IntegrityError as exc:
                if not _is_reference_collision(exc):
                    raise
                logger.info("Booking reference collision on %s (attempt %d/%d)", reference, attempt, attempts)

        logger.warning(
            "Booking reference generation exhausted for entity=%s accommodation=%s date=%s",
            entity_id, accommodation_id, on_date,
        )
        raise GenerationExhausted(
            f"Could not allocate a unique booking reference after {attempts} attempts",
            {"entity_id": entity_id, "accommodation_id": accommodation_id, "date": on_date.isoformat()},
        )
