import pytest
from sqlalchemy.exc import OperationalError

from esg_app import db, taxonomy
from esg_app.errors import StoreFailure, ValidationRejected
from esg_app.models import (
    Standard, Issue, Criteria, Indicator, Sector,
    SectorStandards, StandardIssues, IssueCriteria, CriteriaIndicators,
)
from esg_app.taxonomy import (
    Scope, fetch_children, fetch_sectors, fetch_subsectors, fetch_indicators_by_criteria,
    add_child_and_link, add_sector, add_subsector, synthesize_code, resolve_codes,
)


@pytest.fixture
def scope(ctx):
    db.session.add(Sector(name="Industry"))
    db.session.commit()
    return Scope("Industry")


class TestScope:

    def test_sector_scope(self):
        scope = Scope("Industry")
        assert scope.as_filter() == {"scope_kind": "sector", "scope_name": "Industry"}

    def test_subsector_wins(self):
        scope = Scope("Industry", "Chemicals")
        assert (scope.kind, scope.name) == ("subsector", "Chemicals")


class TestReads:

    def test_no_junction_row_means_no_children(self, scope):
        assert fetch_children("standard", scope) == []
        assert fetch_children("issue", scope, standard_name=["ISO 14001"]) == []
        assert fetch_children("criteria", Scope("Nowhere"), issue_name="Water") == []

    def test_sectors_and_subsectors_ordered(self, scope):
        add_sector("Agriculture")
        add_subsector("Steel", "Industry")
        add_subsector("Cement", "Industry")
        assert [s.name for s in fetch_sectors()] == ["Agriculture", "Industry"]
        assert [s.name for s in fetch_subsectors("Industry")] == ["Cement", "Steel"]

    def test_children_filtered_by_parent_names(self, scope):
        add_child_and_link("issue", "Water", scope, standard_name="ISO 14001")
        add_child_and_link("issue", "Waste", scope, standard_name="ISO 14001")
        add_child_and_link("issue", "Safety", scope, standard_name="ISO 45001")

        names = [i.name for i in fetch_children("issue", scope, standard_name=["ISO 14001"])]
        assert names == ["Waste", "Water"]
        both = fetch_children("issue", scope, standard_name=["ISO 14001", "ISO 45001"])
        assert [i.name for i in both] == ["Safety", "Waste", "Water"]
        assert fetch_children("issue", scope, standard_name=[]) == []

    def test_subsector_scope_is_separate(self, scope):
        add_child_and_link("standard", "ISO 14001", scope)
        add_child_and_link("standard", "GRI", Scope("Industry", "Chemicals"))

        assert [s.name for s in fetch_children("standard", scope)] == ["ISO 14001"]
        assert [s.name for s in fetch_children("standard", Scope("Industry", "Chemicals"))] == ["GRI"]

    def test_unexpected_filter_key(self, scope):
        with pytest.raises(ValueError):
            fetch_children("standard", scope, issue_name="Water")

    def test_indicators_paired_with_criteria(self, industry, ctx):
        pairs = fetch_indicators_by_criteria(
            industry, ["ISO 14001"], ["Climate change"], ["GHG emissions"]
        )
        assert [(c, i.name) for c, i in pairs] == [("GHG emissions", "Direct CO2 emissions")]
        assert pairs[0][1].unit == "tCO2e"

    def test_indicator_listed_once_per_criteria(self, scope):
        for issue in ("Climate", "Energy"):
            add_child_and_link(
                "indicator", "CO2 tonnes", scope,
                standard_name="ISO 14001", issue_name=issue, criteria_name="CO2 emissions",
            )
        pairs = fetch_indicators_by_criteria(
            scope, ["ISO 14001"], ["Climate", "Energy"], ["CO2 emissions"]
        )
        assert [(c, i.code) for c, i in pairs] == [("CO2 emissions", "CO2TONNES")]

    def test_resolve_codes_keeps_order(self, industry, ctx):
        add_child_and_link("standard", "GRI", industry)
        assert resolve_codes("standard", ["GRI", "Unknown", "ISO 14001"]) == ["GRI", "ISO14001"]


class TestAddChildAndLink:

    def test_creates_entity_and_junction(self, scope):
        code = add_child_and_link("standard", "ISO 14001", scope)
        assert code == "ISO14001"
        assert db.session.get(Standard, "ISO14001").name == "ISO 14001"
        row = SectorStandards.query.filter_by(scope_kind="sector", scope_name="Industry").one()
        assert row.standard_codes == ["ISO14001"]

    def test_idempotent(self, scope):
        for _ in range(2):
            add_child_and_link(
                "criteria", "Energy use", scope,
                standard_name="ISO 14001", issue_name="Climate",
            )
        row = IssueCriteria.query.one()
        assert row.criteria_codes == ["ENERGYUSE"]
        assert Criteria.query.count() == 1

    def test_appends_to_existing_row(self, scope):
        add_child_and_link("issue", "Water", scope, standard_name="ISO 14001")
        add_child_and_link("issue", "Waste", scope, standard_name="ISO 14001")
        row = StandardIssues.query.one()
        assert row.issue_codes == ["WATER", "WASTE"]

    def test_reuses_code_of_existing_name(self, scope):
        db.session.add(Indicator(code="IND-001", name="Water withdrawn"))
        db.session.commit()
        code = add_child_and_link(
            "indicator", "Water withdrawn", scope, {"unit": "m3"},
            standard_name="ISO 14001", issue_name="Water", criteria_name="Withdrawal",
        )
        assert code == "IND-001"
        row = CriteriaIndicators.query.one()
        assert row.indicator_codes == ["IND-001"]
        assert row.unit == "m3"

    def test_same_entity_under_many_scopes(self, scope):
        for issue in ("Climate", "Energy"):
            add_child_and_link(
                "criteria", "CO2 emissions", scope,
                standard_name="ISO 14001", issue_name=issue,
            )
        assert Criteria.query.count() == 1
        assert IssueCriteria.query.count() == 2

    def test_code_collision_gets_suffix(self, scope):
        first = add_child_and_link(
            "criteria", "Water use", scope, standard_name="S", issue_name="I",
        )
        second = add_child_and_link(
            "criteria", "WATER USE", scope, standard_name="S", issue_name="I",
        )
        assert first == synthesize_code("Water use") == "WATERUSE"
        assert second.startswith("WATERUSE-") and len(second) == len("WATERUSE-") + 6
        assert IssueCriteria.query.one().criteria_codes == [first, second]

    def test_missing_parent_key(self, scope):
        with pytest.raises(ValueError):
            add_child_and_link("criteria", "Energy use", scope, standard_name="ISO 14001")

    def test_unknown_level(self, scope):
        with pytest.raises(ValueError):
            add_child_and_link("sector", "Mining", scope)

    def test_junction_row_created_by_another_writer(self, scope, monkeypatch):
        add_child_and_link("issue", "Water", scope, standard_name="ISO 14001")

        real_lookup = taxonomy._find_link
        lookups = []

        def stale_lookup(lvl, key):
            lookups.append(key)
            # The first lookup runs before the other writer's row is visible
            return None if len(lookups) == 1 else real_lookup(lvl, key)

        monkeypatch.setattr(taxonomy, "_find_link", stale_lookup)
        add_child_and_link("issue", "Waste", scope, standard_name="ISO 14001")
        monkeypatch.undo()

        assert len(lookups) == 2
        row = StandardIssues.query.one()
        assert row.issue_codes == ["WATER", "WASTE"]
        assert {i.code for i in Issue.query.all()} == {"WATER", "WASTE"}

    def test_entity_created_by_another_writer(self, scope, monkeypatch):
        db.session.add(Standard(code="GRI", name="GRI"))
        db.session.commit()
        db.session.expunge_all()

        monkeypatch.setattr(
            taxonomy, "_code_for", lambda entity, name: (synthesize_code(name), False)
        )
        assert add_child_and_link("standard", "GRI", scope) == "GRI"
        monkeypatch.undo()

        assert Standard.query.count() == 1
        assert SectorStandards.query.one().standard_codes == ["GRI"]

    def test_failure_leaves_nothing_behind(self, scope, monkeypatch):
        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db.session, "commit", failing_commit)
        with pytest.raises(StoreFailure):
            add_child_and_link("issue", "Biodiversity", scope, standard_name="ISO 14001")
        monkeypatch.undo()

        assert Issue.query.count() == 0
        assert StandardIssues.query.count() == 0


class TestSectors:

    def test_duplicate_sector_rejected(self, scope):
        with pytest.raises(ValidationRejected):
            add_sector("Industry")
        assert [s.name for s in fetch_sectors()] == ["Industry"]

    def test_subsector_needs_unique_name(self, scope):
        add_subsector("Chemicals", "Industry")
        with pytest.raises(ValidationRejected):
            add_subsector("Chemicals", "Industry")
