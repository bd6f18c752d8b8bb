"""
Tests for the printer routing table.
"""

import pytest

from pos_shared.config.constants import PrinterCategory
from pos_shared.utils.exceptions import ValidationError
from pos_core.models import PrinterDestination
from pos_core.services.domain import PrinterInfo, PrinterRoutingTable
from pos_core.services.domain.printer_routing import validate_destinations

KITCHEN = PrinterCategory.KITCHEN
BAR = PrinterCategory.BAR
DESSERT = PrinterCategory.DESSERT


class TestValidateDestinations:

    def test_groups_by_context_sorted_by_priority(self):
        grouped = validate_destinations(
            [
                PrinterInfo(id=3, name="Barra", category=BAR, priority=2),
                PrinterInfo(id=1, name="Cocina", category=KITCHEN, priority=1),
                PrinterInfo(id=5, name="Terraza", category=KITCHEN, priority=1, sector_id=7),
            ],
            max_per_context=3,
        )

        assert [p.id for p in grouped[None]] == [1, 3]
        assert [p.id for p in grouped[7]] == [5]

    def test_duplicate_priority_in_context(self):
        with pytest.raises(ValidationError):
            validate_destinations(
                [
                    PrinterInfo(id=1, name="Cocina", category=KITCHEN, priority=1),
                    PrinterInfo(id=2, name="Barra", category=BAR, priority=1),
                ],
                max_per_context=3,
            )

    def test_same_priority_in_different_contexts_is_fine(self):
        grouped = validate_destinations(
            [
                PrinterInfo(id=1, name="Cocina", category=KITCHEN, priority=1),
                PrinterInfo(id=2, name="Cocina terraza", category=KITCHEN, priority=1, sector_id=2),
            ],
            max_per_context=3,
        )

        assert set(grouped) == {None, 2}

    def test_duplicate_id(self):
        with pytest.raises(ValidationError):
            validate_destinations(
                [
                    PrinterInfo(id=1, name="Cocina", category=KITCHEN, priority=1),
                    PrinterInfo(id=1, name="Barra", category=BAR, priority=2),
                ],
                max_per_context=3,
            )

    @pytest.mark.parametrize("priority", [0, -2])
    def test_priority_must_be_positive(self, priority):
        with pytest.raises(ValidationError):
            validate_destinations(
                [PrinterInfo(id=1, name="Cocina", category=KITCHEN, priority=priority)],
                max_per_context=3,
            )

    def test_too_many_printers_in_context(self):
        with pytest.raises(ValidationError):
            validate_destinations(
                [PrinterInfo(id=i, name=f"P{i}", category=KITCHEN, priority=i) for i in range(1, 5)],
                max_per_context=3,
            )


class TestPrinterRoutingTable:

    def test_sector_without_printers_uses_default_context(self, printers):
        assert [p.id for p in printers.destinations_for(42)] == [1, 2, 3]

    def test_sector_with_own_printers(self):
        table = PrinterRoutingTable(
            [
                PrinterInfo(id=1, name="Cocina", category=KITCHEN, priority=1),
                PrinterInfo(id=9, name="Barra terraza", category=BAR, priority=1, sector_id=4),
            ],
            max_per_context=3,
        )

        assert [p.id for p in table.destinations_for(4)] == [9]
        assert [p.id for p in table.destinations_for(None)] == [1]

    def test_empty_table(self):
        table = PrinterRoutingTable(max_per_context=3)

        assert table.destinations_for(1) == ()
        assert table.contexts == []

    def test_reload_replaces_configuration(self, printers):
        printers.reload([PrinterInfo(id=4, name="Cocina nueva", category=KITCHEN, priority=1)])

        assert [p.id for p in printers.destinations_for(None)] == [4]
        assert printers.get(1) is None
        assert printers.get(4).name == "Cocina nueva"

    def test_invalid_reload_keeps_previous_configuration(self, printers):
        with pytest.raises(ValidationError):
            printers.reload(
                [
                    PrinterInfo(id=4, name="A", category=KITCHEN, priority=1),
                    PrinterInfo(id=5, name="B", category=BAR, priority=1),
                ]
            )

        assert [p.id for p in printers.destinations_for(None)] == [1, 2, 3]

    def test_invalid_initial_configuration(self):
        with pytest.raises(ValidationError):
            PrinterRoutingTable(
                [PrinterInfo(id=i, name=f"P{i}", category=BAR, priority=i) for i in range(1, 4)],
                max_per_context=2,
            )

    def test_load_from_database(self, session_factory, db_session):
        db_session.add_all([
            PrinterDestination(id=1, name="Cocina", category=KITCHEN.value, priority=1),
            PrinterDestination(id=2, name="Barra", category=BAR.value, priority=2, is_active=False),
            PrinterDestination(id=3, name="Postres terraza", category=DESSERT.value, priority=1, sector_id=5),
        ])
        db_session.commit()

        table = PrinterRoutingTable.load(session_factory, max_per_context=3)

        default = table.destinations_for(None)
        assert [(p.id, p.is_active) for p in default] == [(1, True), (2, False)]
        assert default[0].category == KITCHEN
        assert [p.id for p in table.destinations_for(5)] == [3]
        assert sorted(table.contexts, key=lambda c: -1 if c is None else c) == [None, 5]
