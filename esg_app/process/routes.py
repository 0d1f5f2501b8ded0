from flask import Blueprint, redirect, url_for, request, session, jsonify, get_flashed_messages, current_app
from flask_login import current_user

from esg_app import login_manager, notify
from esg_app.auth.routes import validate_password
from esg_app.duplicate_guard import validate_add, group_by_band
from esg_app.errors import StoreFailure, ValidationRejected
from esg_app.organization import (
    validate_structure, create_organization, save_selection, list_organizations,
    organization_indicators, create_processes, create_organization_user,
)
from esg_app.taxonomy import (
    Scope, fetch_sectors, fetch_subsectors, fetch_children, fetch_indicators_by_criteria,
    add_sector, add_subsector, add_child_and_link, INDICATOR_FIELDS,
)
from esg_app.wizard import WizardSession, STEPS, shows_structure_forms

process_bp = Blueprint("process", __name__, url_prefix="/process")

INDICATOR_CHOICES = {
    "type": ("primary", "calculated"),
    "axis": ("environment", "social", "governance"),
    "aggregation": ("sum", "last_month", "average", "max", "min"),
    "frequency": ("monthly", "quarterly", "annual"),
}

LEVEL_LABELS = {
    "sector": "Sector",
    "subsector": "Subsector",
    "standard": "Standard",
    "issue": "Issue",
    "criteria": "Criteria",
    "indicator": "Indicator",
}


@process_bp.before_request
def _require_admin():
    if not current_user.is_authenticated:
        return login_manager.unauthorized()
    if not current_user.is_admin:
        return jsonify({"ok": False, "error": "Access denied."}), 403
    return None


# =========================================================================
# Helpers
# =========================================================================

def _payload():
    return request.get_json(silent=True) or request.form


def _confirmed(payload):
    return str(payload.get("confirm", "")).lower() in ("1", "true", "yes")


def _respond(wizard, status=200, **data):
    body = {
        "ok": status < 400,
        "wizard": wizard.to_dict(),
        "messages": [
            {"category": category, "message": message}
            for category, message in get_flashed_messages(with_categories=True)
        ],
    }
    body.update(data)
    return jsonify(body), status


def _enter_step(wizard, step):
    """Apply the navigation guard, then record the step as current."""
    fallback = wizard.missing_prerequisite(step)
    if fallback is not None:
        return redirect(url_for(f"process.{STEPS[fallback]}"))
    wizard.set_current_step(step)
    wizard.save(session)
    return None


def _scope(wizard):
    return Scope(wizard.selected_sector, wizard.selected_subsector)


def _names(rows):
    return [row.name for row in rows]


def _read(loader, failure_message):
    """Run a list read; on store failure report it and degrade to empty."""
    try:
        return loader()
    except StoreFailure as e:
        current_app.logger.error(str(e))
        notify.error(failure_message)
        return []


def _pick(payload, key, selected, label):
    value = (payload.get(key) or "").strip()
    if value:
        return value
    if len(selected) == 1:
        return selected[0]
    raise ValueError(f"Please choose the {label} to attach this entry to.")


def _guarded_add(wizard, entity_type, name, write):
    """
    Run the duplicate guard and, if it passes, the store write.

    Without confirm=1 in the request, similar entries stop the add with a
    409 listing them; resubmitting with confirm=1 adds anyway.
    """
    label = LEVEL_LABELS[entity_type]
    if not name:
        notify.error(f"{label} name is required.")
        return _respond(wizard, 400)

    confirmed = _confirmed(_payload())
    pending = []

    def on_ambiguous(candidate, similar_items):
        if confirmed:
            return True
        pending.extend(similar_items)
        notify.warning(f"Entries similar to '{candidate}' already exist. Confirm to add it anyway.")
        return False

    if not validate_add(entity_type, name, on_ambiguous=on_ambiguous):
        if pending:
            return _respond(
                wizard, 409,
                item_name=name,
                similar_items=group_by_band(pending),
            )
        return _respond(wizard, 400)

    try:
        result = write()
    except ValidationRejected:
        notify.error("This entry already exists (singular/plural forms included).")
        return _respond(wizard, 400)
    except StoreFailure as e:
        current_app.logger.error(str(e))
        notify.error(f"Error while adding the {label.lower()}.")
        return _respond(wizard, 500)

    notify.success(f"{label} added successfully.")
    return _respond(wizard, 201, added=name, code=result)


def _toggle(wizard, mutator):
    name = (_payload().get("name") or "").strip()
    if not name:
        notify.error("A name is required.")
        return _respond(wizard, 400)
    mutator(name)
    wizard.save(session)
    return _respond(wizard)


# =========================================================================
# Navigation
# =========================================================================

@process_bp.route("/")
def index():
    wizard = WizardSession.load(session)
    return redirect(url_for(f"process.{STEPS[wizard.current_step]}"))


@process_bp.route("/finish", methods=["POST"])
def finish():
    wizard = WizardSession.load(session)
    complete = wizard.is_complete
    wizard.discard(session)
    if complete:
        notify.success("Configuration complete.")
    return redirect(url_for("dashboard.index"))


# =========================================================================
# Step 1: sectors and subsectors
# =========================================================================

@process_bp.route("/sectors")
def sectors():
    wizard = WizardSession.load(session)
    _enter_step(wizard, 1)
    sector_list = _read(fetch_sectors, "Error while loading sectors.")
    subsector_list = []
    if wizard.selected_sector:
        subsector_list = _read(
            lambda: fetch_subsectors(wizard.selected_sector),
            "Error while loading subsectors.",
        )
    return _respond(wizard, sectors=_names(sector_list), subsectors=_names(subsector_list))


@process_bp.route("/sectors/select", methods=["POST"])
def select_sector():
    wizard = WizardSession.load(session)
    return _toggle(wizard, wizard.set_sector)


@process_bp.route("/subsectors/select", methods=["POST"])
def select_subsector():
    wizard = WizardSession.load(session)
    if not wizard.selected_sector:
        notify.error("Select a sector first.")
        return _respond(wizard, 400)
    return _toggle(wizard, wizard.set_subsector)


@process_bp.route("/sectors/add", methods=["POST"])
def add_sector_route():
    wizard = WizardSession.load(session)
    name = (_payload().get("name") or "").strip()
    return _guarded_add(wizard, "sector", name, lambda: add_sector(name))


@process_bp.route("/subsectors/add", methods=["POST"])
def add_subsector_route():
    wizard = WizardSession.load(session)
    if not wizard.selected_sector:
        notify.error("Select a sector first.")
        return _respond(wizard, 400)
    name = (_payload().get("name") or "").strip()
    return _guarded_add(
        wizard, "subsector", name, lambda: add_subsector(name, wizard.selected_sector)
    )


# =========================================================================
# Step 2: standards
# =========================================================================

@process_bp.route("/standards")
def standards():
    wizard = WizardSession.load(session)
    denied = _enter_step(wizard, 2)
    if denied:
        return denied
    rows = _read(lambda: fetch_children("standard", _scope(wizard)), "Error while loading standards.")
    return _respond(wizard, standards=_names(rows))


@process_bp.route("/standards/select", methods=["POST"])
def select_standard():
    wizard = WizardSession.load(session)
    return _toggle(wizard, wizard.toggle_standard)


@process_bp.route("/standards/add", methods=["POST"])
def add_standard():
    wizard = WizardSession.load(session)
    if not wizard.selected_sector:
        notify.error("Select a sector first.")
        return _respond(wizard, 400)
    name = (_payload().get("name") or "").strip()
    return _guarded_add(
        wizard, "standard", name,
        lambda: add_child_and_link("standard", name, _scope(wizard)),
    )


# =========================================================================
# Step 3: issues
# =========================================================================

@process_bp.route("/issues")
def issues():
    wizard = WizardSession.load(session)
    denied = _enter_step(wizard, 3)
    if denied:
        return denied
    scope = _scope(wizard)
    available = _read(
        lambda: fetch_children("standard", scope), "Error while loading available standards."
    )
    rows = _read(
        lambda: fetch_children("issue", scope, standard_name=wizard.selected_standards),
        "Error while loading issues.",
    )
    return _respond(wizard, issues=_names(rows), available_standards=_names(available))


@process_bp.route("/issues/select", methods=["POST"])
def select_issue():
    wizard = WizardSession.load(session)
    return _toggle(wizard, wizard.toggle_issue)


@process_bp.route("/issues/add", methods=["POST"])
def add_issue():
    wizard = WizardSession.load(session)
    payload = _payload()
    name = (payload.get("name") or "").strip()
    try:
        standard = _pick(payload, "standard", wizard.selected_standards, "standard")
    except ValueError as e:
        notify.error(str(e))
        return _respond(wizard, 400)
    return _guarded_add(
        wizard, "issue", name,
        lambda: add_child_and_link("issue", name, _scope(wizard), standard_name=standard),
    )


# =========================================================================
# Step 4: criteria
# =========================================================================

@process_bp.route("/criteria")
def criteria():
    wizard = WizardSession.load(session)
    denied = _enter_step(wizard, 4)
    if denied:
        return denied
    rows = _read(
        lambda: fetch_children("criteria", _scope(wizard), issue_name=wizard.selected_issues),
        "Error while loading criteria.",
    )
    return _respond(
        wizard,
        criteria=[{"name": c.name, "description": c.description or ""} for c in rows],
    )


@process_bp.route("/criteria/select", methods=["POST"])
def select_criteria():
    wizard = WizardSession.load(session)
    return _toggle(wizard, wizard.toggle_criteria)


@process_bp.route("/criteria/add", methods=["POST"])
def add_criteria():
    wizard = WizardSession.load(session)
    payload = _payload()
    name = (payload.get("name") or "").strip()
    try:
        issue = _pick(payload, "issue", wizard.selected_issues, "issue")
        standard = _pick(payload, "standard", wizard.selected_standards, "standard")
    except ValueError as e:
        notify.error(str(e))
        return _respond(wizard, 400)
    attrs = {"description": payload.get("description", "")}
    return _guarded_add(
        wizard, "criteria", name,
        lambda: add_child_and_link(
            "criteria", name, _scope(wizard), attrs,
            standard_name=standard, issue_name=issue,
        ),
    )


# =========================================================================
# Step 5: indicators
# =========================================================================

def _indicator_json(criteria_name, indicator):
    data = {"name": indicator.name, "code": indicator.code, "criteria": criteria_name}
    for field in INDICATOR_FIELDS:
        data[field] = getattr(indicator, field)
    return data


@process_bp.route("/indicators")
def indicators():
    wizard = WizardSession.load(session)
    denied = _enter_step(wizard, 5)
    if denied:
        return denied
    pairs = _read(
        lambda: fetch_indicators_by_criteria(
            _scope(wizard),
            wizard.selected_standards,
            wizard.selected_issues,
            wizard.selected_criteria,
        ),
        "Error while loading indicators.",
    )
    return _respond(wizard, indicators=[_indicator_json(c, i) for c, i in pairs])


@process_bp.route("/indicators/select", methods=["POST"])
def select_indicator():
    wizard = WizardSession.load(session)
    return _toggle(wizard, wizard.toggle_indicator)


@process_bp.route("/indicators/add", methods=["POST"])
def add_indicator():
    wizard = WizardSession.load(session)
    payload = _payload()
    name = (payload.get("name") or "").strip()
    try:
        criteria_name = _pick(payload, "criteria", wizard.selected_criteria, "criteria")
        standard = _pick(payload, "standard", wizard.selected_standards, "standard")
        # A single issue scopes the link; the first selected one unless given
        issue = (payload.get("issue") or "").strip() or (wizard.selected_issues or [""])[0]
        if not issue:
            raise ValueError("Please choose the issue to attach this entry to.")
        attrs = {
            "description": payload.get("description", ""),
            "unit": (payload.get("unit") or "").strip() or None,
        }
        for field, choices in INDICATOR_CHOICES.items():
            value = payload.get(field) or choices[0]
            if value not in choices:
                raise ValueError(f"Invalid {field}: {value}. Expected one of {', '.join(choices)}.")
            attrs[field] = value
    except ValueError as e:
        notify.error(str(e))
        return _respond(wizard, 400)
    return _guarded_add(
        wizard, "indicator", name,
        lambda: add_child_and_link(
            "indicator", name, _scope(wizard), attrs,
            standard_name=standard, issue_name=issue, criteria_name=criteria_name,
        ),
    )


# =========================================================================
# Step 6: organization
# =========================================================================

@process_bp.route("/company")
def company():
    wizard = WizardSession.load(session)
    _enter_step(wizard, 6)
    return _respond(wizard, organization_types=["simple", "with_subsidiaries", "group"])


@process_bp.route("/company", methods=["POST"])
def create_company():
    wizard = WizardSession.load(session)
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    organization = payload.get("organization") or {}
    business_lines = payload.get("business_lines") or []
    subsidiaries = payload.get("subsidiaries") or []
    sites = payload.get("sites") or []

    if not isinstance(organization, dict) or not all(
        isinstance(records, list) and all(isinstance(r, dict) for r in records)
        for records in (business_lines, subsidiaries, sites)
    ):
        notify.error("Organization, business lines, subsidiaries and sites must be JSON objects.")
        return _respond(wizard, 400)

    # Sub-forms only exist for structured organizations
    if not shows_structure_forms(organization.get("type", "simple")):
        business_lines, subsidiaries = [], []

    error = validate_structure(organization, business_lines, subsidiaries, sites)
    if error:
        notify.error(error)
        return _respond(wizard, 400)

    try:
        org_name = create_organization(organization, business_lines, subsidiaries, sites)
    except StoreFailure as e:
        current_app.logger.error(str(e))
        notify.error("Error while creating the organization.")
        return _respond(wizard, 500)

    selection_saved = False
    if wizard.selected_sector:
        try:
            save_selection(org_name, wizard)
            selection_saved = True
        except StoreFailure as e:
            current_app.logger.error(str(e))
            notify.error("Organization created, but its ESG selection could not be saved.")

    if selection_saved or not wizard.selected_sector:
        notify.success("Organization created successfully.")
    wizard.set_organization_created(True)
    wizard.set_current_step(7)
    wizard.save(session)
    return _respond(wizard, 201, organization=org_name, selection_saved=selection_saved)


# =========================================================================
# Step 7: users and processes
# =========================================================================

@process_bp.route("/users")
def users():
    wizard = WizardSession.load(session)
    _enter_step(wizard, 7)
    organizations = _names(_read(list_organizations, "Error while loading organizations."))
    selected = request.args.get("organization") or (organizations[0] if organizations else "")
    indicator_rows = []
    if selected:
        indicator_rows = _read(
            lambda: organization_indicators(selected),
            "Error while loading the organization's indicators.",
        )
    return _respond(
        wizard,
        organizations=organizations,
        organization=selected,
        indicators=[{"code": i.code, "name": i.name} for i in indicator_rows],
    )


@process_bp.route("/users/processes", methods=["POST"])
def add_processes():
    wizard = WizardSession.load(session)
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    organization_name = str(payload.get("organization") or "").strip()
    processes = payload.get("processes") or []
    if not isinstance(processes, list) or not all(isinstance(p, dict) for p in processes):
        processes = []
    if not organization_name or not processes:
        notify.error("Choose an organization and describe at least one process.")
        return _respond(wizard, 400)

    try:
        created = create_processes(organization_name, processes)
    except ValueError as e:
        notify.error(str(e))
        return _respond(wizard, 400)
    except StoreFailure as e:
        current_app.logger.error(str(e))
        notify.error("Error while creating the processes.")
        return _respond(wizard, 500)

    notify.success("Processes created.")
    wizard.set_users_created(True)
    wizard.save(session)
    return _respond(wizard, 201, processes=[{"code": p.code, "name": p.name} for p in created])


@process_bp.route("/users/create-user", methods=["POST"])
def add_user():
    wizard = WizardSession.load(session)
    payload = _payload()
    fields = {key: (payload.get(key) or "").strip() for key in (
        "organization", "username", "email", "full_name", "role", "password",
    )}
    if not all(fields.values()):
        notify.error("All required fields must be filled.")
        return _respond(wizard, 400)
    pw_error = validate_password(fields["password"])
    if pw_error:
        notify.error(pw_error)
        return _respond(wizard, 400)

    processes = payload.get("processes") or []
    if isinstance(processes, str):
        processes = [p.strip() for p in processes.split(",") if p.strip()]

    try:
        user = create_organization_user(
            fields["organization"], fields["username"], fields["email"],
            fields["full_name"], fields["role"], fields["password"], processes,
        )
    except ValueError as e:
        notify.error(str(e))
        return _respond(wizard, 400)
    except StoreFailure as e:
        current_app.logger.error(str(e))
        notify.error("Error while creating the user.")
        return _respond(wizard, 500)

    notify.success(f"User '{user.username}' created.")
    wizard.set_users_created(True)
    wizard.save(session)
    return _respond(wizard, 201, user=user.username)
