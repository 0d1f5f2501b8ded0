"""
Organization records created at the end of the wizard.

Everything here is partitioned by organization name: the structure
(business lines, subsidiaries, sites), the snapshot of taxonomy codes the
organization selected, and the processes its users report under.
"""

import logging
import re

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from esg_app import db
from esg_app.errors import StoreFailure
from esg_app.models import (
    Organization, BusinessLine, Subsidiary, Site, OrganizationSelection, Process,
    Standard, Issue, Criteria, Indicator, User, ROLES,
)
from esg_app.taxonomy import resolve_codes

logger = logging.getLogger(__name__)

ORGANIZATION_TYPES = ("simple", "with_subsidiaries", "group")
CONTACT_FIELDS = ("name", "address", "city", "country", "phone", "email")
PROCESS_CODE_LENGTH = 10

_NON_CODE_CHARS = re.compile(r"[^A-Z0-9]")


def _missing_contact(record):
    return any(
        not isinstance(record.get(field), str) or not record[field].strip()
        for field in CONTACT_FIELDS
    )


def validate_structure(organization, business_lines, subsidiaries, sites):
    """Return an error message if the structure is incomplete, else None."""
    org_type = organization.get("type", "simple")
    if org_type not in ORGANIZATION_TYPES:
        return f"Unknown organization type: {org_type}."

    if _missing_contact(organization):
        return "Please fill in all required organization fields."

    if org_type == "group":
        if not business_lines:
            return "Groups must have at least one business line."
        if any(not (bl.get("name") or "").strip() for bl in business_lines):
            return "All business lines must have a name."

    if org_type in ("with_subsidiaries", "group"):
        if not subsidiaries:
            return "This organization type must have at least one subsidiary."
        for sub in subsidiaries:
            if _missing_contact(sub):
                return "All subsidiaries must have their required fields filled in."
            if org_type == "group" and not sub.get("business_line_name"):
                return "Group subsidiaries must be attached to a business line."

    if not sites:
        return "The organization must have at least one site."
    for site in sites:
        if _missing_contact(site):
            return "All sites must have their required fields filled in."
        if org_type == "with_subsidiaries" and not site.get("subsidiary_name"):
            return "Sites of an organization with subsidiaries must be attached to a subsidiary."
        if org_type == "group" and (not site.get("business_line_name") or not site.get("subsidiary_name")):
            return "Group sites must be attached to a business line and a subsidiary."

    return None


def _contact(record):
    return {
        "name": record["name"].strip(),
        "description": record.get("description", ""),
        "address": record["address"],
        "city": record["city"],
        "country": record["country"],
        "phone": record["phone"],
        "email": record["email"],
    }


def create_organization(organization, business_lines, subsidiaries, sites):
    """Insert the organization and its structure in one transaction."""
    org_type = organization.get("type", "simple")
    org_name = organization["name"].strip()
    try:
        db.session.add(Organization(
            organization_type=org_type,
            website=organization.get("website", ""),
            **_contact(organization),
        ))
        db.session.flush()

        if org_type == "group":
            for bl in business_lines:
                db.session.add(BusinessLine(
                    organization_name=org_name,
                    name=bl["name"].strip(),
                    description=bl.get("description", ""),
                ))

        if org_type in ("with_subsidiaries", "group"):
            for sub in subsidiaries:
                db.session.add(Subsidiary(
                    organization_name=org_name,
                    business_line_name=sub.get("business_line_name") or None,
                    website=sub.get("website", ""),
                    **_contact(sub),
                ))

        for site in sites:
            db.session.add(Site(
                organization_name=org_name,
                business_line_name=site.get("business_line_name") or None,
                subsidiary_name=site.get("subsidiary_name") or None,
                **_contact(site),
            ))

        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StoreFailure(f"create organization '{org_name}'", e) from e

    logger.info(f"Created organization '{org_name}' ({org_type}) with {len(sites)} site(s)")
    return org_name


def save_selection(organization_name, wizard):
    """Store the wizard's taxonomy picks as codes for the organization."""
    try:
        selection = db.session.get(OrganizationSelection, organization_name)
        if selection is None:
            selection = OrganizationSelection(organization_name=organization_name)
            db.session.add(selection)
        selection.sector_name = wizard.selected_sector
        selection.subsector_name = wizard.selected_subsector
        selection.standard_codes = resolve_codes("standard", wizard.selected_standards)
        selection.issue_codes = resolve_codes("issue", wizard.selected_issues)
        selection.criteria_codes = resolve_codes("criteria", wizard.selected_criteria)
        selection.indicator_codes = resolve_codes("indicator", wizard.selected_indicators)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StoreFailure(f"save ESG selection for '{organization_name}'", e) from e
    return selection


def list_organizations():
    try:
        return Organization.query.order_by(Organization.name).all()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StoreFailure("load organizations", e) from e


def organization_indicators(organization_name):
    """Indicators saved for an organization, ordered by name."""
    try:
        selection = db.session.get(OrganizationSelection, organization_name)
        if selection is None or not selection.indicator_codes:
            return []
        return (
            Indicator.query.filter(Indicator.code.in_(selection.indicator_codes))
            .order_by(Indicator.name)
            .all()
        )
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StoreFailure(f"load indicators of '{organization_name}'", e) from e


def organization_esg_data(organization_name):
    """The saved selection with codes turned back into names, or None."""
    try:
        selection = db.session.get(OrganizationSelection, organization_name)
        if selection is None:
            return None
        data = {
            "sector": {
                "sector_name": selection.sector_name,
                "subsector_name": selection.subsector_name,
            },
        }
        for key, model, codes in (
            ("standards", Standard, selection.standard_codes),
            ("issues", Issue, selection.issue_codes),
            ("criteria", Criteria, selection.criteria_codes),
            ("indicators", Indicator, selection.indicator_codes),
        ):
            if not codes:
                data[key] = []
                continue
            rows = model.query.filter(model.code.in_(codes)).order_by(model.name).all()
            data[key] = [row.name for row in rows]
        return data
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StoreFailure(f"load ESG data of '{organization_name}'", e) from e


def process_code(name):
    return _NON_CODE_CHARS.sub("_", name.upper())[:PROCESS_CODE_LENGTH]


def _free_code(code, taken):
    # Truncated names can collide: "WATER_TREA", "WATER_TREA_2", ...
    candidate = code
    suffix = 2
    while candidate in taken:
        candidate = f"{code}_{suffix}"
        suffix += 1
    taken.add(candidate)
    return candidate


def create_processes(organization_name, processes):
    """Create processes for an organization. Each needs a name."""
    if any(not isinstance(p.get("name"), str) or not p["name"].strip() for p in processes):
        raise ValueError("All processes must have a name.")
    created = []
    try:
        taken = {
            row[0] for row in
            db.session.query(Process.code).filter_by(organization_name=organization_name).all()
        }
        for p in processes:
            process = Process(
                code=_free_code(process_code(p["name"].strip()), taken),
                name=p["name"].strip(),
                description=p.get("description", ""),
                indicator_codes=list(p.get("indicator_codes") or []),
                organization_name=organization_name,
            )
            db.session.add(process)
            created.append(process)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StoreFailure(f"create processes for '{organization_name}'", e) from e
    logger.info(f"Created {len(created)} process(es) for '{organization_name}'")
    return created


def create_organization_user(organization_name, username, email, full_name, role, password, processes=()):
    if role not in ROLES or role == "admin":
        raise ValueError(f"Role must be one of: {', '.join(r for r in ROLES if r != 'admin')}.")
    user = User(
        username=username,
        email=email,
        full_name=full_name,
        role=role,
        organization_name=organization_name,
        processes=list(processes),
    )
    user.set_password(password)
    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise ValueError("Username or email already exists.") from e
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StoreFailure(f"create user '{username}'", e) from e
    return user
