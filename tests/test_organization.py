import pytest

from esg_app import db
from esg_app.models import Organization, Site, Subsidiary, CriteriaIndicators
from esg_app.organization import (
    validate_structure, create_organization, save_selection, organization_esg_data,
    process_code, create_processes,
)
from esg_app.reference_data import seed_reference_taxonomy
from esg_app.wizard import WizardSession


def _contact(name, **extra):
    record = {
        "name": name,
        "address": "12 rue de la Paix",
        "city": "Paris",
        "country": "France",
        "phone": "0102030405",
        "email": f"{name.lower().replace(' ', '.')}@example.com",
    }
    record.update(extra)
    return record


class TestValidateStructure:

    def test_simple_organization(self):
        assert validate_structure(_contact("Acme"), [], [], [_contact("HQ")]) is None

    def test_missing_contact_field(self):
        org = _contact("Acme", phone="")
        assert validate_structure(org, [], [], [_contact("HQ")]) == (
            "Please fill in all required organization fields."
        )

    def test_site_required(self):
        assert validate_structure(_contact("Acme"), [], [], []) == (
            "The organization must have at least one site."
        )

    def test_subsidiaries_required(self):
        org = _contact("Acme", type="with_subsidiaries")
        assert "subsidiary" in validate_structure(org, [], [], [_contact("HQ")])

    def test_site_attached_to_subsidiary(self):
        org = _contact("Acme", type="with_subsidiaries")
        subs = [_contact("Acme Nord")]
        assert validate_structure(org, [], subs, [_contact("HQ")]) is not None
        sites = [_contact("HQ", subsidiary_name="Acme Nord")]
        assert validate_structure(org, [], subs, sites) is None

    def test_group_attachments(self):
        org = _contact("Acme", type="group")
        lines = [{"name": "Chemicals"}]
        subs = [_contact("Acme Nord", business_line_name="Chemicals")]
        sites = [_contact("HQ", business_line_name="Chemicals", subsidiary_name="Acme Nord")]
        assert validate_structure(org, lines, subs, sites) is None
        assert validate_structure(org, [{"name": " "}], subs, sites) == (
            "All business lines must have a name."
        )
        assert validate_structure(org, lines, [_contact("Acme Nord")], sites) is not None

    def test_unknown_type(self):
        assert validate_structure(_contact("Acme", type="holding"), [], [], []).startswith(
            "Unknown organization type"
        )


class TestCreateOrganization:

    def test_group_structure_stored(self, ctx):
        org = _contact("Acme", type="group")
        create_organization(
            org,
            [{"name": "Chemicals"}],
            [_contact("Acme Nord", business_line_name="Chemicals")],
            [_contact("HQ", business_line_name="Chemicals", subsidiary_name="Acme Nord")],
        )
        acme = db.session.get(Organization, "Acme")
        assert acme.organization_type == "group"
        assert [s.name for s in acme.subsidiaries] == ["Acme Nord"]
        assert Site.query.one().subsidiary_name == "Acme Nord"

    def test_simple_organization_ignores_sub_forms(self, ctx):
        create_organization(_contact("Acme"), [], [_contact("Acme Nord")], [_contact("HQ")])
        assert Subsidiary.query.count() == 0

    def test_selection_snapshot_round_trips_to_names(self, industry, ctx):
        create_organization(_contact("Acme"), [], [], [_contact("HQ")])
        wizard = WizardSession()
        wizard.set_sector("Industry")
        wizard.toggle_standard("ISO 14001")
        wizard.toggle_issue("Climate change")
        wizard.toggle_criteria("GHG emissions")
        wizard.toggle_indicator("Direct CO2 emissions")
        wizard.toggle_indicator("Not in the catalog")
        save_selection("Acme", wizard)

        data = organization_esg_data("Acme")
        assert data["sector"] == {"sector_name": "Industry", "subsector_name": None}
        assert data["standards"] == ["ISO 14001"]
        assert data["indicators"] == ["Direct CO2 emissions"]

    def test_no_selection(self, ctx):
        assert organization_esg_data("Nobody") is None


class TestProcesses:

    @pytest.mark.parametrize("name, code", [
        ("Water treatment", "WATER_TREA"),
        ("boilers", "BOILERS"),
        ("Équipe R&D", "_QUIPE_R_D"),
    ])
    def test_process_code(self, name, code):
        assert process_code(name) == code

    def test_truncated_codes_stay_unique(self, ctx):
        create_organization(_contact("Acme"), [], [], [_contact("HQ")])
        first = create_processes("Acme", [
            {"name": "Water treatment north"},
            {"name": "Water treatment south"},
        ])
        later = create_processes("Acme", [{"name": "Water treatment east"}])
        assert [p.code for p in first + later] == ["WATER_TREA", "WATER_TREA_2", "WATER_TREA_3"]

    def test_codes_are_per_organization(self, ctx):
        create_organization(_contact("Acme"), [], [], [_contact("HQ")])
        create_organization(_contact("Globex"), [], [], [_contact("Plant")])
        (acme,) = create_processes("Acme", [{"name": "Boilers"}])
        (globex,) = create_processes("Globex", [{"name": "Boilers"}])
        assert acme.code == globex.code == "BOILERS"

    def test_unnamed_process_rejected(self, ctx):
        with pytest.raises(ValueError):
            create_processes("Acme", [{"name": "Boilers"}, {"name": ""}])


def test_seed_reference_taxonomy_is_repeatable(ctx):
    first = seed_reference_taxonomy()
    rows = {r.criteria_name: list(r.indicator_codes) for r in CriteriaIndicators.query.all()}
    assert seed_reference_taxonomy() == first
    assert {r.criteria_name: r.indicator_codes for r in CriteriaIndicators.query.all()} == rows
