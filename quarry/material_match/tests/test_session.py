"""
Tests for the working session (row aggregation engine).

Run with: pytest quarry/material_match/tests/test_session.py -v
"""

import pytest

from quarry.material_match.catalog import InMemoryCatalogProvider
from quarry.material_match.config import OrphanPolicy
from quarry.material_match.lookup import InvalidInputError, LocalLookupClient
from quarry.material_match.models import ReferenceEntry, Unit
from quarry.material_match.session import (
    ReinforcementError,
    UnknownRowError,
    WorkingSession,
)


ROWS = [
    {"element": "Wand EG", "material": "Hochbaubeton C25/30", "quantity": 2.5, "unit": "m3"},
    {"element": "Decke", "material": "Beton", "quantity": 10, "unit": "m3"},
    {"element": "Wand EG", "material": "Hochbaubeton C25/30", "quantity": 1.5, "unit": "m3"},
    {"element": "Dämmung", "material": "Dämmung Glas", "quantity": 10, "unit": "m3"},
    {"element": "Bodenfläche", "material": "Fläche", "quantity": 120, "unit": "m2"},
]


@pytest.fixture
def session(make_session):
    return make_session(ROWS)


@pytest.fixture
def ids(session):
    return [row.row_id for row in session.rows]


class TestIngest:
    def test_rows_in_input_order(self, session):
        assert [r.element for r in session.rows] == [r["element"] for r in ROWS]
        assert len({r.row_id for r in session.rows}) == 5

    def test_confident_row(self, session):
        row = session.rows[0]
        assert row.matched_entry_id == "c1"
        assert row.mass_kg == 6000.0
        assert row.gwp == pytest.approx(600.0)
        assert row.density == 2400.0

    def test_unconfident_row_keeps_mass(self, session):
        row = session.rows[3]
        assert row.matched_entry_id is None
        assert row.mass_kg == pytest.approx(200.0)
        assert row.gwp == 0.0
        assert row.density == 20.0
        assert [c.id for c in row.candidates] == ["c1", "c2", "s1", "m1", "t1", "g1"]

    def test_area_row_unmatched(self, session):
        row = session.rows[4]
        assert row.unit == Unit.M2
        assert row.matched_entry_id is None
        assert row.density is None
        assert row.mass_kg == 0.0

    def test_originals_keyed_by_row_id(self, make_session):
        originals = [{"Bauteil": r["element"]} for r in ROWS]
        session = make_session(ROWS, headers=["Bauteil"], originals=originals)
        for row, original in zip(session.rows, originals):
            assert session.original_for(row.row_id) == original

    def test_originals_must_be_parallel(self, make_session):
        with pytest.raises(InvalidInputError):
            make_session(ROWS, originals=[{}])

    def test_non_list_rejected(self, make_session):
        with pytest.raises(InvalidInputError):
            make_session({"rows": ROWS})

    def test_fetch_failure_falls_back(self, failing_lookup, config):
        rows = [
            {"element": "Stahlträger", "material": "Baustahl", "quantity": 500, "unit": "kg"},
            {"element": "Decke", "material": "Beton", "quantity": 10, "unit": "m3"},
        ]
        session = WorkingSession.ingest(rows, lookup=failing_lookup, config=config)

        assert len(session.rows) == 2
        assert all(r.matched_entry_name == "Unmatched - fetch error" for r in session.rows)
        assert session.rows[0].mass_kg == 500
        assert session.rows[1].mass_kg == 0.0
        assert session.rows[0].gwp == 0.0
        assert len(session.notices) == 1
        assert session.notices[0].startswith("Failed to fetch LCA data")

    def test_fetch_failure_leaves_area_rows_unlabelled(self, failing_lookup, config):
        rows = [
            {"element": "Decke", "material": "Beton", "quantity": 10, "unit": "m3"},
            {"element": "Bodenfläche", "material": "Fläche", "quantity": 120, "unit": "m2"},
        ]
        session = WorkingSession.ingest(rows, lookup=failing_lookup, config=config)

        assert session.rows[0].matched_entry_name == "Unmatched - fetch error"
        assert session.rows[1].matched_entry_name is None
        assert session.rows[1].mass_kg == 0.0

    def test_add_items_appends(self, session):
        added = session.add_items([{"element": "Dach", "material": "Brettschichtholz", "quantity": 4, "unit": "m3"}])
        assert session.rows[-1] is added[0]
        assert added[0].mass_kg == pytest.approx(1800.0)


class TestOverride:
    def test_override_recomputes_named_rows_only(self, session, ids, entry_by_id):
        before = session.rows[1].gwp
        updated = session.override([ids[3]], entry_by_id["g1"])

        assert updated == [ids[3]]
        row = session.rows[3]
        assert row.matched_entry_id == "g1"
        assert row.matched_entry_name == "Glaswolle"
        assert row.mass_kg == pytest.approx(200.0)
        assert row.gwp == pytest.approx(240.0)
        assert row.overridden
        assert session.rows[1].gwp == before

    def test_override_uses_entry_density(self, session, ids, entry_by_id):
        session.override([ids[3]], entry_by_id["c1"])
        assert session.rows[3].mass_kg == pytest.approx(24000.0)
        assert session.rows[3].density == 2400.0

    def test_override_keeps_candidates(self, session, ids, entry_by_id):
        candidates = list(session.rows[1].candidates)
        session.override([ids[1]], entry_by_id["t1"])
        assert session.rows[1].candidates == candidates

    def test_area_rows_skipped(self, session, ids, entry_by_id):
        updated = session.override([ids[0], ids[4]], entry_by_id["c2"])
        assert updated == [ids[0]]
        assert session.rows[4].matched_entry_id is None

    def test_unknown_id_mutates_nothing(self, session, ids, entry_by_id):
        with pytest.raises(UnknownRowError):
            session.override([ids[0], "missing"], entry_by_id["g1"])
        assert session.rows[0].matched_entry_id == "c1"

    def test_bulk_update_keeps_order(self, session, ids, entry_by_id):
        session.bulk_update([ids[2], ids[0]], entry_by_id["m1"])
        assert [r.row_id for r in session.rows] == ids
        assert session.rows[0].matched_entry_id == "m1"
        assert session.rows[2].matched_entry_id == "m1"

    def test_override_group(self, session, ids, entry_by_id):
        updated = session.override_group(("Wand EG", "Hochbaubeton C25/30"), entry_by_id["c2"])
        assert updated == [ids[0], ids[2]]
        assert session.rows[0].gwp == pytest.approx(2.5 * 2500 * 0.15)

    def test_override_unknown_group(self, session, entry_by_id):
        with pytest.raises(InvalidInputError):
            session.override_group(("Nope", "Nope"), entry_by_id["c2"])


class TestGrouping:
    def test_groups_in_first_seen_order(self, session, ids):
        groups = session.group_view()
        assert [g.key for g in groups] == [
            ("Wand EG", "Hochbaubeton C25/30"),
            ("Decke", "Beton"),
            ("Dämmung", "Dämmung Glas"),
            ("Bodenfläche", "Fläche"),
        ]
        assert groups[0].member_row_ids == [ids[0], ids[2]]

    def test_group_sums(self, session):
        group = session.group_view()[0]
        assert group.quantity == pytest.approx(4.0)
        assert group.mass_kg == pytest.approx(9600.0)
        assert group.gwp == pytest.approx(960.0)
        assert group.matched_entry_name == "Hochbaubeton C25/30"

    def test_sums_follow_mutations(self, session, ids, entry_by_id):
        session.override([ids[2]], entry_by_id["t1"])
        group = session.group_view()[0]
        assert group.mass_kg == pytest.approx(6000.0 + 1.5 * 450)

        session.delete([ids[0]])
        group = next(g for g in session.group_view() if g.element == "Wand EG")
        assert group.member_row_ids == [ids[2]]


class TestUnitChange:
    def test_change_to_kg_rematches(self, session, ids):
        outcome = session.change_unit(ids[1], "kg")
        assert outcome.applied
        row = session.rows[1]
        assert row.unit == Unit.KG
        assert row.mass_kg == pytest.approx(10.0)
        assert row.gwp == pytest.approx(1.0)

    def test_change_to_area_clears_match(self, session, ids):
        outcome = session.change_unit(ids[0], "m2")
        assert outcome.applied
        row = session.rows[0]
        assert row.unit == Unit.M2
        assert row.matched_entry_id is None
        assert row.candidates == []
        assert row.density is None
        assert row.mass_kg == 0.0
        assert row.gwp == 0.0

    def test_stale_response_discarded(self, session, ids, lookup, entry_by_id):
        pending = session.begin_unit_change(ids[1], "kg")
        results = lookup.lookup([pending.item])
        session.override([ids[1]], entry_by_id["c2"])

        outcome = session.complete_unit_change(pending, results)
        assert outcome.stale
        assert not outcome.applied
        assert session.rows[1].unit == Unit.M3
        assert session.rows[1].matched_entry_id == "c2"

    def test_superseded_change_discarded(self, session, ids, lookup):
        first = session.begin_unit_change(ids[1], "kg")
        second = session.begin_unit_change(ids[1], "m3")
        first_results = lookup.lookup([first.item])
        second_results = lookup.lookup([second.item])

        assert session.complete_unit_change(second, second_results).applied
        assert session.complete_unit_change(first, first_results).stale
        assert session.rows[1].unit == Unit.M3

    def test_deleted_row_discarded(self, session, ids, lookup):
        pending = session.begin_unit_change(ids[1], "kg")
        results = lookup.lookup([pending.item])
        session.delete([ids[1]])
        assert session.complete_unit_change(pending, results).stale

    def test_lookup_failure_leaves_row(self, session, ids, failing_lookup):
        before = session.rows[1].to_dict()
        session.lookup = failing_lookup

        outcome = session.change_unit(ids[1], "kg")

        assert not outcome.applied
        assert outcome.error
        after = session.rows[1].to_dict()
        assert after == before
        assert len(session.notices) == 1

    @pytest.mark.parametrize("results", [None, [], "two"])
    def test_malformed_response_leaves_row(self, session, ids, lookup, results):
        pending = session.begin_unit_change(ids[0], "kg")
        if results == "two":
            results = lookup.lookup([pending.item, pending.item])
        before = session.rows[0].to_dict()

        with pytest.raises(InvalidInputError):
            session.complete_unit_change(pending, results)

        row = session.rows[0]
        assert row.unit == Unit.M3
        assert row.mass_kg == 6000.0
        assert row.revision == pending.revision
        assert row.to_dict() == before

    def test_unknown_row(self, session):
        with pytest.raises(UnknownRowError):
            session.change_unit("missing", "kg")


class TestDelete:
    def test_delete_two_of_five(self, make_session):
        originals = [{"Bauteil": r["element"]} for r in ROWS]
        session = make_session(ROWS, headers=["Bauteil"], originals=originals)
        ids = [r.row_id for r in session.rows]

        removed = session.delete([ids[3], ids[1]])

        assert removed == [ids[1], ids[3]]
        assert [r.row_id for r in session.rows] == [ids[0], ids[2], ids[4]]
        assert set(session.originals) == {ids[0], ids[2], ids[4]}
        assert session.original_for(ids[2]) == {"Bauteil": "Wand EG"}

    def test_delete_unknown_id_mutates_nothing(self, session, ids):
        with pytest.raises(UnknownRowError):
            session.delete([ids[0], "missing"])
        assert len(session.rows) == 5

    def test_cascade_removes_derived_rows(self, session, ids):
        derived = session.derive_reinforcement([ids[1]], 100)
        removed = session.delete([ids[1]])
        assert derived[0].row_id in removed
        assert all(r.derived_from_row_id is None for r in session.rows)

    def test_flag_policy_keeps_orphans(self, session, ids):
        session.config.settings.orphan_policy = OrphanPolicy.FLAG
        derived = session.derive_reinforcement([ids[1]], 100)

        removed = session.delete([ids[1]])

        assert removed == [ids[1]]
        assert derived[0] in session.rows
        assert derived[0].orphaned

    def test_delete_clears_per_area(self, session, ids):
        session.toggle_per_area(ids[0])
        session.delete([ids[0]])
        assert not session.is_per_area(ids[0])


class TestArea:
    def test_per_area_display(self, session, ids):
        session.set_area([ids[0]], 50)
        assert session.toggle_per_area(ids[0]) is True

        values = session.display_values(ids[0])
        assert values.per_area
        assert values.gwp == pytest.approx(12.0)
        assert values.mass_kg == pytest.approx(120.0)
        assert session.rows[0].gwp == pytest.approx(600.0)

    def test_toggle_without_area_shows_totals(self, session, ids):
        session.toggle_per_area(ids[0])
        values = session.display_values(ids[0])
        assert not values.per_area
        assert values.gwp == pytest.approx(600.0)

    def test_non_positive_area_clears(self, session, ids):
        session.set_area([ids[0]], 50)
        session.set_area([ids[0]], 0)
        assert session.rows[0].area is None

    def test_toggle_off(self, session, ids):
        session.toggle_per_area(ids[0])
        assert session.toggle_per_area(ids[0]) is False

    def test_link_area(self, session, ids):
        session.link_area([ids[0], ids[1]], ids[4])
        assert session.rows[0].area == 120
        assert session.rows[1].area == 120

    def test_link_area_requires_area_row(self, session, ids):
        with pytest.raises(InvalidInputError):
            session.link_area([ids[0]], ids[1])


class TestReinforcement:
    def test_derive_from_volume(self, session, ids):
        derived = session.derive_reinforcement([ids[1]], 100)

        assert len(derived) == 1
        row = derived[0]
        assert session.rows[-1] is row
        assert row.element == "Decke - Bewehrung 100kg/m³"
        assert row.material_label == "Armierungsstahl"
        assert row.unit == Unit.KG
        assert row.quantity == pytest.approx(1000.0)
        assert row.mass_kg == pytest.approx(1000.0)
        assert row.gwp == pytest.approx(700.0)
        assert row.burden == pytest.approx(1_000_000.0)
        assert row.energy == pytest.approx(3000.0)
        assert row.matched_entry_id == "s1"
        assert row.match_score == 1.0
        assert row.derived_from_row_id == ids[1]

    def test_rows_appended_in_parent_order(self, session, ids):
        derived = session.derive_reinforcement([ids[2], ids[0]], 2.5)
        assert [r.derived_from_row_id for r in derived] == [ids[0], ids[2]]
        assert derived[0].element == "Wand EG - Bewehrung 2.5kg/m³"
        assert len(session.rows) == 7

    def test_non_volume_parents_skipped(self, session, ids):
        assert session.derive_reinforcement([ids[4]], 100) == []
        assert len(session.rows) == 5

    @pytest.mark.parametrize("rate", [0, -5, "abc", float("nan"), float("inf"), None])
    def test_invalid_rate(self, session, ids, rate):
        with pytest.raises(InvalidInputError):
            session.derive_reinforcement([ids[1]], rate)

    def test_missing_steel_aborts(self, entries, config):
        provider = InMemoryCatalogProvider([e for e in entries if e.id != "s1"])
        session = WorkingSession.ingest(ROWS, lookup=LocalLookupClient(provider, config), config=config)

        with pytest.raises(ReinforcementError):
            session.derive_reinforcement([session.rows[1].row_id], 100)
        assert len(session.rows) == 5

    def test_implausible_steel_aborts(self, config):
        provider = InMemoryCatalogProvider([
            ReferenceEntry(id="b", display_name="Baustahl", density=7850, gwp_per_kg=1.0),
            ReferenceEntry(id="c", display_name="Hochbaubeton", density=2400, gwp_per_kg=0.1),
        ])
        session = WorkingSession.ingest(ROWS, lookup=LocalLookupClient(provider, config), config=config)

        with pytest.raises(ReinforcementError, match="Armierungsstahl"):
            session.derive_reinforcement([session.rows[1].row_id], 100)

    def test_lookup_failure_aborts(self, session, ids, failing_lookup):
        session.lookup = failing_lookup
        with pytest.raises(ReinforcementError):
            session.derive_reinforcement([ids[1]], 100)
        assert len(session.rows) == 5


class TestViews:
    def test_search(self, session):
        rows = session.view(search="BETON")
        assert [r.element for r in rows] == ["Wand EG", "Decke", "Wand EG"]

    def test_search_matched_name(self, session):
        rows = session.view(search="c25")
        assert len(rows) == 3  # two by label, "Decke" by matched entry name

    def test_sort_does_not_reorder_collection(self, session, ids):
        rows = session.view(sort_key="gwp", descending=True)
        assert rows[0].element == "Decke"
        assert [r.row_id for r in session.rows] == ids

    def test_bad_sort_key(self, session):
        with pytest.raises(InvalidInputError):
            session.view(sort_key="colour")

    def test_totals(self, session):
        totals = session.totals()
        assert totals.item_count == 5
        assert totals.mass_kg == pytest.approx(33800.0)
        assert totals.gwp == pytest.approx(3360.0)

    def test_totals_over_selection(self, session, ids):
        totals = session.totals(session.selected_rows([ids[2], ids[0]]))
        assert totals.item_count == 2
        assert totals.gwp == pytest.approx(960.0)

    def test_selected_rows_in_collection_order(self, session, ids):
        rows = session.selected_rows([ids[4], ids[0]])
        assert [r.row_id for r in rows] == [ids[0], ids[4]]
