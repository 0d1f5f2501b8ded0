"""
Access layer for the shared ESG taxonomy.

The taxonomy is a graph sector/subsector -> standards -> issues -> criteria ->
indicators. Entities live in their own tables; each level is linked to the
one above through a junction row holding a JSON array of child codes, keyed
by a scope tuple:

    standard   (scope)                                       -> standard_codes
    issue      (scope, standard_name)                        -> issue_codes
    criteria   (scope, standard_name, issue_name)            -> criteria_codes
    indicator  (scope, standard_name, issue_name, criteria)  -> indicator_codes

where scope is the selected subsector if any, else the selected sector.

Writes are upsert-append: a child is created if missing, then its code is
appended to the junction array for the exact scope tuple unless already
present. Both steps commit together; on failure the session is rolled back
and StoreFailure is raised.
"""

import hashlib
import logging
import re
from collections import namedtuple
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from esg_app import db
from esg_app.errors import StoreFailure, ValidationRejected
from esg_app.models import (
    Sector, Subsector, Standard, Issue, Criteria, Indicator,
    SectorStandards, StandardIssues, IssueCriteria, CriteriaIndicators,
)

logger = logging.getLogger(__name__)

Level = namedtuple("Level", ["entity", "junction", "codes_attr", "parent_keys"])

LEVELS = {
    "standard": Level(Standard, SectorStandards, "standard_codes", ()),
    "issue": Level(Issue, StandardIssues, "issue_codes", ("standard_name",)),
    "criteria": Level(
        Criteria, IssueCriteria, "criteria_codes", ("standard_name", "issue_name")
    ),
    "indicator": Level(
        Indicator, CriteriaIndicators, "indicator_codes",
        ("standard_name", "issue_name", "criteria_name"),
    ),
}

INDICATOR_FIELDS = ("description", "unit", "type", "axis", "aggregation", "frequency")

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Scope:
    """Sector-or-subsector part of a junction key. The subsector wins when set."""
    sector: str
    subsector: str = None

    @property
    def kind(self):
        return "subsector" if self.subsector else "sector"

    @property
    def name(self):
        return self.subsector or self.sector

    def as_filter(self):
        return {"scope_kind": self.kind, "scope_name": self.name}


def _level(level):
    try:
        return LEVELS[level]
    except KeyError:
        raise ValueError(f"Unknown taxonomy level: {level!r}") from None


def _unique(codes):
    seen = set()
    ordered = []
    for code in codes:
        if code not in seen:
            seen.add(code)
            ordered.append(code)
    return ordered


# =========================================================================
# Reads
# =========================================================================

def fetch_sectors():
    try:
        return Sector.query.order_by(Sector.name).all()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StoreFailure("load sectors", e) from e


def fetch_subsectors(sector_name):
    try:
        return (
            Subsector.query.filter_by(sector_name=sector_name)
            .order_by(Subsector.name)
            .all()
        )
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StoreFailure(f"load subsectors of '{sector_name}'", e) from e


def _junction_query(lvl, scope, filters):
    unknown = set(filters) - set(lvl.parent_keys)
    if unknown:
        raise ValueError(f"Unexpected scope keys: {sorted(unknown)}")

    query = lvl.junction.query.filter_by(**scope.as_filter())
    for key, value in filters.items():
        column = getattr(lvl.junction, key)
        if isinstance(value, (list, tuple, set, frozenset)):
            query = query.filter(column.in_(list(value)))
        else:
            query = query.filter(column == value)
    return query


def fetch_children(level, scope, **filters):
    """
    Entities linked under `scope` at `level`, ordered by name.

    Each keyword filter narrows one parent key (standard_name, issue_name,
    criteria_name) to a single name or a list of names. A scope with no
    junction row yet simply has no children.
    """
    lvl = _level(level)
    try:
        rows = _junction_query(lvl, scope, filters).all()
        codes = _unique(code for row in rows for code in (getattr(row, lvl.codes_attr) or []))
        if not codes:
            return []
        return (
            lvl.entity.query.filter(lvl.entity.code.in_(codes))
            .order_by(lvl.entity.name)
            .all()
        )
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StoreFailure(f"load {level} children of {scope.kind} '{scope.name}'", e) from e


def fetch_indicators_by_criteria(scope, standards, issues, criteria):
    """(criteria_name, indicator) pairs for the selected criteria."""
    lvl = LEVELS["indicator"]
    try:
        rows = _junction_query(lvl, scope, {
            "standard_name": list(standards),
            "issue_name": list(issues),
            "criteria_name": list(criteria),
        }).all()
        pairs = []
        seen = set()
        for row in rows:
            if not row.indicator_codes:
                continue
            indicators = (
                Indicator.query.filter(Indicator.code.in_(row.indicator_codes))
                .order_by(Indicator.name)
                .all()
            )
            for indicator in indicators:
                # A criteria linked under several issues or standards lists each indicator once
                key = (row.criteria_name, indicator.code)
                if key not in seen:
                    seen.add(key)
                    pairs.append((row.criteria_name, indicator))
        return pairs
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StoreFailure(f"load indicators of {scope.kind} '{scope.name}'", e) from e


def resolve_codes(level, names):
    """Map entity names to codes, keeping the order of `names`."""
    lvl = _level(level)
    names = list(names)
    if not names:
        return []
    try:
        rows = lvl.entity.query.filter(lvl.entity.name.in_(names)).all()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StoreFailure(f"resolve {level} codes", e) from e
    by_name = {}
    for row in rows:
        by_name.setdefault(row.name, row.code)
    return [by_name[name] for name in names if name in by_name]


# =========================================================================
# Writes
# =========================================================================

def _insert_named(model, entity_type, **fields):
    """Insert a name-keyed entity; an existing name is a rejected duplicate."""
    name = fields["name"]
    try:
        if db.session.get(model, name) is not None:
            raise ValidationRejected(entity_type, name)
        with db.session.begin_nested():
            db.session.add(model(**fields))
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise ValidationRejected(entity_type, name) from e
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StoreFailure(f"add {entity_type} '{name}'", e) from e


def add_sector(name):
    _insert_named(Sector, "sector", name=name)
    logger.info(f"Added sector '{name}'")


def add_subsector(name, sector_name):
    _insert_named(Subsector, "subsector", name=name, sector_name=sector_name)
    logger.info(f"Added subsector '{name}' under '{sector_name}'")


def synthesize_code(name):
    return _WHITESPACE.sub("", name).upper()


def _code_for(entity, name):
    """Reuse the code of an entity with this exact name, else derive a new one."""
    existing = entity.query.filter_by(name=name).first()
    if existing is not None:
        return existing.code, True

    code = synthesize_code(name)
    holder = db.session.get(entity, code)
    if holder is not None and holder.name != name:
        # "Water use" and "WATER USE" share a synthesized code but are different entries
        digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:6].upper()
        code = f"{code}-{digest}"
        holder = db.session.get(entity, code)
    return code, holder is not None


def _insert_entity(entity, code, name, attrs):
    try:
        with db.session.begin_nested():
            db.session.add(entity(code=code, name=name, **attrs))
    except IntegrityError:
        # Inserted concurrently by another writer; reuse it
        logger.info(f"{entity.__tablename__} code '{code}' already present, reusing it")


def _find_link(lvl, key):
    return lvl.junction.query.filter_by(**key).first()


def _link(lvl, scope, parent_keys, code, extra=None):
    key = dict(scope.as_filter(), **parent_keys)
    row = _find_link(lvl, key)
    if row is None:
        try:
            with db.session.begin_nested():
                db.session.add(lvl.junction(**key, **{lvl.codes_attr: [code]}, **(extra or {})))
            return
        except IntegrityError:
            # Another writer created the row since the lookup
            row = _find_link(lvl, key)

    codes = list(getattr(row, lvl.codes_attr) or [])
    if code not in codes:
        # Reassign so the JSON column is flagged dirty
        setattr(row, lvl.codes_attr, codes + [code])


def add_child_and_link(level, name, scope, attrs=None, **parent_keys):
    """
    Create `name` at `level` if needed and link it under the scope tuple.

    `parent_keys` must name exactly the level's parent keys, e.g.
    add_child_and_link("criteria", "Energy use", scope,
                       standard_name="ISO 14001", issue_name="Climate").
    Returns the child's code. Calling it twice with the same arguments
    leaves a single occurrence of the code in the junction array.
    """
    lvl = _level(level)
    missing = [k for k in lvl.parent_keys if not parent_keys.get(k)]
    unknown = set(parent_keys) - set(lvl.parent_keys)
    if missing or unknown:
        raise ValueError(
            f"{level} link needs keys {list(lvl.parent_keys)}, got {sorted(parent_keys)}"
        )

    attrs = dict(attrs or {})
    extra = None
    if level == "indicator" and attrs.get("unit"):
        extra = {"unit": attrs["unit"]}

    try:
        code, exists = _code_for(lvl.entity, name)
        if not exists:
            _insert_entity(lvl.entity, code, name, attrs)
        _link(lvl, scope, parent_keys, code, extra)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to add {level} '{name}' under {scope.kind} '{scope.name}': {e}")
        raise StoreFailure(f"add {level} '{name}'", e) from e

    logger.info(f"Linked {level} '{name}' ({code}) under {scope.kind} '{scope.name}' {parent_keys}")
    return code
