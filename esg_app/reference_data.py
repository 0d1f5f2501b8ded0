"""
Starter reference taxonomy loaded by `flask seed-taxonomy`.

Seeding goes through the same add-and-link path as the wizard, so running it
twice leaves the data unchanged.

Each entry of REFERENCE_TAXONOMY is one sector with its standards; under each
standard, issues; under each issue, criteria; under each criteria,
indicators as (name, unit, axis, aggregation, frequency).
"""

import logging

from esg_app import db
from esg_app.models import Sector, Subsector
from esg_app.taxonomy import Scope, add_child_and_link

logger = logging.getLogger(__name__)

REFERENCE_TAXONOMY = [
    {
        "sector": "Industry",
        "subsectors": ["Manufacturing", "Chemicals"],
        "standards": {
            "ISO 14001": {
                "Climate change": {
                    "Greenhouse gas emissions": [
                        ("Direct CO2 emissions", "tCO2e", "environment", "sum", "monthly"),
                        ("Indirect energy emissions", "tCO2e", "environment", "sum", "monthly"),
                    ],
                    "Energy consumption": [
                        ("Electricity consumption", "kWh", "environment", "sum", "monthly"),
                        ("Share of renewable energy", "%", "environment", "average", "quarterly"),
                    ],
                },
                "Water": {
                    "Water withdrawal": [
                        ("Water withdrawn", "m3", "environment", "sum", "monthly"),
                    ],
                },
            },
            "ISO 45001": {
                "Occupational health and safety": {
                    "Workplace accidents": [
                        ("Lost time injury frequency rate", "", "social", "average", "monthly"),
                        ("Number of workplace accidents", "", "social", "sum", "monthly"),
                    ],
                },
            },
        },
    },
    {
        "sector": "Financial services",
        "subsectors": ["Banking", "Insurance"],
        "standards": {
            "GRI": {
                "Business ethics": {
                    "Anti-corruption": [
                        ("Employees trained on anti-corruption", "%", "governance", "last_month", "annual"),
                    ],
                },
                "Diversity and inclusion": {
                    "Gender balance": [
                        ("Women in management", "%", "social", "last_month", "annual"),
                    ],
                },
            },
        },
    },
]


def seed_reference_taxonomy(taxonomy=None):
    """Insert the reference taxonomy; returns the number of links written."""
    links = 0
    for entry in taxonomy or REFERENCE_TAXONOMY:
        sector = entry["sector"]
        if db.session.get(Sector, sector) is None:
            db.session.add(Sector(name=sector))
        for subsector in entry.get("subsectors", []):
            if db.session.get(Subsector, subsector) is None:
                db.session.add(Subsector(name=subsector, sector_name=sector))
        db.session.commit()

        scope = Scope(sector)
        for standard, issues in entry["standards"].items():
            add_child_and_link("standard", standard, scope)
            links += 1
            for issue, criteria in issues.items():
                add_child_and_link("issue", issue, scope, standard_name=standard)
                links += 1
                for criteria_name, indicators in criteria.items():
                    add_child_and_link(
                        "criteria", criteria_name, scope,
                        standard_name=standard, issue_name=issue,
                    )
                    links += 1
                    for name, unit, axis, aggregation, frequency in indicators:
                        add_child_and_link(
                            "indicator", name, scope,
                            {
                                "unit": unit or None,
                                "type": "primary",
                                "axis": axis,
                                "aggregation": aggregation,
                                "frequency": frequency,
                            },
                            standard_name=standard, issue_name=issue, criteria_name=criteria_name,
                        )
                        links += 1
    logger.info(f"Reference taxonomy seeded ({links} links).")
    return links
