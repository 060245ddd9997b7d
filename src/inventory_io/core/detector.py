"""Duplicate detection by IP address."""

from dataclasses import dataclass
from enum import Enum

import structlog

from ..persistence.store import InventoryStore

logger = structlog.get_logger(__name__)


class DuplicateKind(str, Enum):
    NONE = "none"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class DuplicateStatus:
    """
    Result of checking one address.

    Attributes:
        kind: NONE or CONFLICT
        existing_id: Equipment already holding the address
        claimed_by_row: Earlier row of a validate-only run that would insert it
    """

    kind: DuplicateKind
    existing_id: str | None = None
    claimed_by_row: int | None = None

    @property
    def is_conflict(self) -> bool:
        return self.kind == DuplicateKind.CONFLICT

    @classmethod
    def none(cls) -> "DuplicateStatus":
        return cls(DuplicateKind.NONE)


class DuplicateDetector:
    """
    Find existing equipment sharing a row's address.

    Addresses are compared in the canonical form produced by the validator,
    so ``2001:DB8::1`` and ``2001:db8:0::1`` are the same address. Empty
    addresses never conflict.
    """

    def __init__(self, store: InventoryStore) -> None:
        self.store = store
        self._claims: dict[str, int] = {}

    def reset(self) -> None:
        self._claims.clear()

    def detect(self, ip_address: str | None) -> DuplicateStatus:
        """
        Check one address.

        Args:
            ip_address: Canonical address, or None

        Returns:
            DuplicateStatus
        """
        if not ip_address:
            return DuplicateStatus.none()

        existing = self.store.find_equipment_by_ip(ip_address)
        if existing is not None:
            logger.debug("Duplicate address", ip_address=ip_address, existing_id=existing.id)
            return DuplicateStatus(DuplicateKind.CONFLICT, existing_id=existing.id)

        claimed_by = self._claims.get(ip_address)
        if claimed_by is not None:
            return DuplicateStatus(DuplicateKind.CONFLICT, claimed_by_row=claimed_by)
        return DuplicateStatus.none()

    def claim(self, ip_address: str | None, row_number: int) -> None:
        """
        Remember that a row would insert this address.

        Only used by validate-only runs, where nothing is written and the
        store alone cannot see in-file duplicates.
        """
        if ip_address:
            self._claims.setdefault(ip_address, row_number)
