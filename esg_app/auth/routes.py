import re
from urllib.parse import urlparse

from flask import Blueprint, redirect, url_for, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user

from esg_app import db
from esg_app.models import User

auth_bp = Blueprint("auth", __name__)

MIN_PASSWORD_LENGTH = 8


def validate_password(password):
    """Check password meets minimum strength requirements."""
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
    if not re.search(r'[A-Za-z]', password):
        return "Password must contain at least one letter."
    if not re.search(r'[0-9]', password):
        return "Password must contain at least one number."
    return None


def _user_json(user):
    return {
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role,
        "organization_name": user.organization_name,
        "processes": user.processes or [],
    }


@auth_bp.route("/login", methods=["GET", "POST"])
def login():
    if current_user.is_authenticated:
        return redirect(url_for("dashboard.index"))
    if request.method == "POST":
        data = request.get_json(silent=True) or request.form
        username = (data.get("username") or "").strip()
        password = data.get("password") or ""
        user = User.query.filter_by(username=username).first()
        if user and user.check_password(password):
            login_user(user)
            next_page = request.args.get("next")
            # Only follow local redirects
            if next_page and (not next_page.startswith("/") or "\\" in next_page or urlparse(next_page).netloc):
                next_page = None
            return redirect(next_page or url_for("dashboard.index"))
        return jsonify({"ok": False, "error": "Invalid username or password."}), 401
    return jsonify({"ok": False, "error": "Login required."}), 401


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"ok": True})


@auth_bp.route("/me")
@login_required
def me():
    """Identity and role of the signed-in user."""
    return jsonify({"ok": True, "user": _user_json(current_user)})


@auth_bp.route("/users")
@login_required
def user_list():
    if not current_user.is_admin:
        return jsonify({"ok": False, "error": "Access denied."}), 403
    query = User.query
    organization = request.args.get("organization")
    if organization:
        query = query.filter_by(organization_name=organization)
    users = query.order_by(User.created_at.desc()).all()
    return jsonify({"ok": True, "users": [_user_json(u) for u in users]})


@auth_bp.route("/change-password", methods=["POST"])
@login_required
def change_password():
    data = request.get_json(silent=True) or request.form
    current_pw = data.get("current_password", "")
    new_pw = data.get("new_password", "")
    confirm_pw = data.get("confirm_password", "")

    if not current_user.check_password(current_pw):
        error = "Current password is incorrect."
    elif new_pw != confirm_pw:
        error = "New passwords do not match."
    else:
        error = validate_password(new_pw)
    if error:
        return jsonify({"ok": False, "error": error}), 400

    current_user.set_password(new_pw)
    db.session.commit()
    return jsonify({"ok": True})
