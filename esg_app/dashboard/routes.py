from flask import Blueprint, jsonify, get_flashed_messages
from flask_login import login_required, current_user

from esg_app.errors import StoreFailure
from esg_app.models import Organization, OrganizationSelection, Process, User
from esg_app.organization import organization_esg_data

dashboard_bp = Blueprint("dashboard", __name__)


@dashboard_bp.route("/")
@login_required
def index():
    messages = [
        {"category": category, "message": message}
        for category, message in get_flashed_messages(with_categories=True)
    ]

    if current_user.is_admin:
        organizations = Organization.query.order_by(Organization.name).all()
        configured = {s.organization_name for s in OrganizationSelection.query.all()}
        stats = {
            "total_organizations": len(organizations),
            "configured": sum(1 for o in organizations if o.name in configured),
            "total_users": User.query.count(),
            "total_processes": Process.query.count(),
        }
        return jsonify({
            "ok": True,
            "role": current_user.role,
            "stats": stats,
            "organizations": [
                {
                    "name": o.name,
                    "type": o.organization_type,
                    "configured": o.name in configured,
                }
                for o in organizations
            ],
            "messages": messages,
        })

    # Non-admin roles only ever see their own organization
    organization_name = current_user.organization_name
    if not organization_name:
        return jsonify({"ok": False, "error": "No organization assigned.", "messages": messages}), 403

    try:
        esg_data = organization_esg_data(organization_name)
    except StoreFailure:
        esg_data = None
        messages.append({"category": "danger", "message": "Error while loading ESG data."})

    processes = Process.query.filter_by(organization_name=organization_name)
    if current_user.role == "contributor":
        processes = processes.filter(Process.code.in_(current_user.processes or []))

    return jsonify({
        "ok": True,
        "role": current_user.role,
        "organization": organization_name,
        "esg_data": esg_data,
        "processes": [
            {"code": p.code, "name": p.name, "indicator_codes": p.indicator_codes}
            for p in processes.order_by(Process.name).all()
        ],
        "messages": messages,
    })
