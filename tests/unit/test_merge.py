"""Unit tests for duplicate detection and merge strategies."""

import pytest

from src.inventory_io.core.detector import DuplicateDetector, DuplicateKind, DuplicateStatus
from src.inventory_io.core.merge import MergeAction, MergeEngine
from src.inventory_io.core.resolver import Resolution
from src.inventory_io.models.options import MergeStrategy
from tests.helpers import make_row


@pytest.fixture
def detector(store):
    return DuplicateDetector(store)


@pytest.fixture
def engine(store):
    return MergeEngine(store)


@pytest.fixture
def existing(store, database, seeded_cell):
    """Equipment at 192.168.1.10 in the seeded cell."""
    _, cell_id = seeded_cell
    with database.transaction():
        return store.insert_equipment(cell_id, make_row().equipment_fields(), "seed")


class TestDuplicateDetector:
    def test_no_address_never_conflicts(self, detector, existing):
        assert detector.detect(None) == DuplicateStatus.none()

    def test_new_address(self, detector, existing):
        assert detector.detect("192.168.1.99").kind == DuplicateKind.NONE

    def test_existing_address(self, detector, existing):
        status = detector.detect("192.168.1.10")

        assert status.is_conflict
        assert status.existing_id == existing.id
        assert status.claimed_by_row is None

    def test_canonical_ipv6_match(self, detector, store, database, seeded_cell):
        _, cell_id = seeded_cell
        row = make_row(ip_address="2001:DB8:0::1")
        with database.transaction():
            stored = store.insert_equipment(cell_id, row.equipment_fields(), "seed")

        assert detector.detect(make_row(ip_address="2001:db8::0:1").ip_address).existing_id == stored.id

    def test_claims(self, detector):
        detector.claim("10.0.0.1", 4)
        detector.claim("10.0.0.1", 9)

        status = detector.detect("10.0.0.1")
        assert status.is_conflict
        assert status.claimed_by_row == 4

        detector.reset()
        assert not detector.detect("10.0.0.1").is_conflict


class TestPlan:
    @pytest.mark.parametrize(
        "conflict, strategy, expected",
        [
            (False, MergeStrategy.SKIP, MergeAction.INSERTED),
            (False, MergeStrategy.REPLACE, MergeAction.INSERTED),
            (True, MergeStrategy.SKIP, MergeAction.SKIPPED),
            (True, MergeStrategy.UPDATE, MergeAction.UPDATED),
            (True, MergeStrategy.REPLACE, MergeAction.REPLACED),
        ],
    )
    def test_decision_table(self, conflict, strategy, expected):
        status = (
            DuplicateStatus(DuplicateKind.CONFLICT, existing_id="e-1")
            if conflict
            else DuplicateStatus.none()
        )
        assert MergeEngine.plan(status, strategy) == expected


class TestMerge:
    """Test the writes of each strategy."""

    def test_insert(self, engine, store, database, seeded_cell):
        site_id, cell_id = seeded_cell
        with database.transaction():
            outcome = engine.merge(
                DuplicateStatus.none(),
                make_row(ip_address="10.9.9.9"),
                MergeStrategy.SKIP,
                Resolution(site_id, cell_id),
                "alice",
            )

        assert outcome.action == MergeAction.INSERTED
        assert store.get_equipment(outcome.equipment_id).ip_address == "10.9.9.9"

    def test_skip_writes_nothing(self, engine, store, detector, existing, seeded_cell):
        site_id, cell_id = seeded_cell
        status = detector.detect(existing.ip_address)

        outcome = engine.merge(
            status, make_row(model="Other"), MergeStrategy.SKIP, Resolution(site_id, cell_id), "bob"
        )

        assert outcome.action == MergeAction.SKIPPED
        assert outcome.equipment_id is None
        assert store.get_equipment(existing.id) == existing

    def test_update_only_non_empty_fields(self, engine, store, database, detector, existing, seeded_cell):
        site_id, cell_id = seeded_cell
        row = make_row(model="ControlLogix 5590", firmware_version=None, tags=None, description="New")

        with database.transaction():
            outcome = engine.merge(
                detector.detect(existing.ip_address),
                row,
                MergeStrategy.UPDATE,
                Resolution(site_id, cell_id),
                "bob",
            )

        updated = store.get_equipment(existing.id)
        assert outcome.action == MergeAction.UPDATED
        assert outcome.equipment_id == existing.id
        assert updated.model == "ControlLogix 5590"
        assert updated.description == "New"
        assert updated.firmware_version == "v20.13"
        assert updated.tags == ["robot", "assembly"]
        assert updated.updated_by == "bob"

    def test_replace_clears_empty_optionals(self, engine, store, database, detector, existing, seeded_cell):
        site_id, cell_id = seeded_cell
        row = make_row(firmware_version=None, tags=None, equipment_type=None)

        with database.transaction():
            outcome = engine.merge(
                detector.detect(existing.ip_address),
                row,
                MergeStrategy.REPLACE,
                Resolution(site_id, cell_id),
                "bob",
            )

        replaced = store.get_equipment(existing.id)
        assert outcome.action == MergeAction.REPLACED
        assert replaced.firmware_version is None
        assert replaced.equipment_type is None
        assert replaced.tags == []
        assert replaced.ip_address == existing.ip_address

    def test_update_moves_to_row_cell(self, engine, store, database, detector, existing, seeded_cell):
        site_id, _ = seeded_cell
        with database.transaction():
            other = store.insert_cell(site_id, "Line 2", None, "seed")
            engine.merge(
                detector.detect(existing.ip_address),
                make_row(cell_name="Line 2"),
                MergeStrategy.UPDATE,
                Resolution(site_id, other.id),
                "bob",
            )

        assert store.get_equipment(existing.id).cell_id == other.id
