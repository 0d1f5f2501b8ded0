"""
Duplicate guard for new taxonomy entries.

Before a sector, subsector, standard, issue, criteria or indicator is added,
its name is compared against every existing name of the same type across all
organizations (the taxonomy tables are shared reference data).

Policy per entity type:
- strict (sector, subsector, standard, issue): an equivalent name blocks the
  add outright. Merely similar names are shown to the user, who may confirm.
- permissive (criteria, indicator): the same measurable quantity is meant to
  be attached under many issues, so an equivalent name never blocks. Any
  similar names, exact ones included, are shown for confirmation.
"""

import logging
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from esg_app import db, notify
from esg_app.errors import StoreFailure
from esg_app.models import Sector, Subsector, Standard, Issue, Criteria, Indicator
from esg_app.similarity import similarity, is_equivalent

logger = logging.getLogger(__name__)

STRICT = "strict"
PERMISSIVE = "permissive"

DEDUP_POLICY = {
    "sector": STRICT,
    "subsector": STRICT,
    "standard": STRICT,
    "issue": STRICT,
    "criteria": PERMISSIVE,
    "indicator": PERMISSIVE,
}

ENTITY_MODELS = {
    "sector": Sector,
    "subsector": Subsector,
    "standard": Standard,
    "issue": Issue,
    "criteria": Criteria,
    "indicator": Indicator,
}

DEFAULT_THRESHOLD = 0.3

# Display bands used when asking the user to confirm
HIGH_SIMILARITY = 0.8
MEDIUM_SIMILARITY = 0.6


@dataclass(frozen=True)
class SimilarItem:
    name: str
    similarity: float

    @property
    def band(self):
        if self.similarity >= HIGH_SIMILARITY:
            return "high"
        if self.similarity >= MEDIUM_SIMILARITY:
            return "medium"
        return "low"

    def to_dict(self):
        return {
            "name": self.name,
            "similarity": round(self.similarity, 4),
            "percent": round(self.similarity * 100),
            "band": self.band,
        }


def _policy_for(entity_type):
    try:
        return DEDUP_POLICY[entity_type]
    except KeyError:
        raise ValueError(f"Unknown taxonomy entity type: {entity_type!r}") from None


def _threshold():
    return current_app.config.get("SIMILARITY_THRESHOLD", DEFAULT_THRESHOLD)


def fetch_corpus(entity_type):
    """All existing names for an entity type, unscoped."""
    _policy_for(entity_type)
    model = ENTITY_MODELS[entity_type]
    try:
        return [row[0] for row in db.session.query(model.name).all()]
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StoreFailure(f"load {entity_type} names", e) from e


def find_similar_items(entity_type, name):
    """Existing names scoring above the threshold, best match first."""
    threshold = _threshold()
    items = []
    for existing in fetch_corpus(entity_type):
        score = similarity(name, existing)
        if score > threshold:
            items.append(SimilarItem(existing, score))
    items.sort(key=lambda item: item.similarity, reverse=True)
    return items


def group_by_band(items):
    grouped = {"high": [], "medium": [], "low": []}
    for item in items:
        grouped[item.band].append(item.to_dict())
    return grouped


def validate_add(entity_type, name, parent_scope=None, on_ambiguous=None):
    """
    Decide whether `name` may be added as a new `entity_type`.

    `on_ambiguous(name, similar_items)` is called when similar entries exist
    and the policy leaves the decision to the user; its return value decides.
    `parent_scope` is accepted for callers that know it but does not narrow
    the search: duplicates are checked across the whole shared table.

    Returns False to abort the add, True to proceed. Expected outcomes never
    raise; a failed corpus fetch is reported and treated as an abort.
    """
    policy = _policy_for(entity_type)

    try:
        similar_items = find_similar_items(entity_type, name)
    except StoreFailure as e:
        logger.error(f"Duplicate check for {entity_type} '{name}' failed: {e}")
        notify.error("An error occurred while validating the entry.")
        return False

    exact_match = any(is_equivalent(name, item.name) for item in similar_items)

    if policy == STRICT and exact_match:
        logger.info(f"Rejected duplicate {entity_type} '{name}'")
        notify.error("This entry already exists (singular/plural forms included).")
        return False

    if similar_items and on_ambiguous is not None:
        return bool(on_ambiguous(name, similar_items))

    return True
