from datetime import datetime, timezone

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from esg_app import db, login_manager


ROLES = ("admin", "enterprise", "contributor", "validator")


def _now():
    return datetime.now(timezone.utc)


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    full_name = db.Column(db.String(128), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="contributor")
    # Roles: admin, enterprise, contributor, validator
    organization_name = db.Column(db.String(256), nullable=True, index=True)
    processes = db.Column(db.JSON, default=list)
    created_at = db.Column(db.DateTime, default=_now)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == "admin"


# =========================================================================
# Shared taxonomy (global reference data, not partitioned per organization)
# =========================================================================

class Sector(db.Model):
    __tablename__ = "sectors"

    name = db.Column(db.String(256), primary_key=True)
    created_at = db.Column(db.DateTime, default=_now)
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now)


class Subsector(db.Model):
    __tablename__ = "subsectors"

    name = db.Column(db.String(256), primary_key=True)
    sector_name = db.Column(
        db.String(256), db.ForeignKey("sectors.name"), nullable=False, index=True
    )
    created_at = db.Column(db.DateTime, default=_now)
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now)


class Standard(db.Model):
    __tablename__ = "standards"

    code = db.Column(db.String(128), primary_key=True)
    name = db.Column(db.String(256), nullable=False, index=True)


class Issue(db.Model):
    __tablename__ = "issues"

    code = db.Column(db.String(128), primary_key=True)
    name = db.Column(db.String(256), nullable=False, index=True)


class Criteria(db.Model):
    __tablename__ = "criteria"

    code = db.Column(db.String(128), primary_key=True)
    name = db.Column(db.String(256), nullable=False, index=True)
    description = db.Column(db.Text, default="")


class Indicator(db.Model):
    __tablename__ = "indicators"

    code = db.Column(db.String(128), primary_key=True)
    name = db.Column(db.String(256), nullable=False, index=True)
    description = db.Column(db.Text, default="")
    unit = db.Column(db.String(64), nullable=True)
    type = db.Column(db.String(20), default="primary")
    # Type: primary, calculated
    axis = db.Column(db.String(20), nullable=True)
    # Axis: environment, social, governance
    aggregation = db.Column(db.String(20), default="sum")
    # Aggregation: sum, last_month, average, max, min
    frequency = db.Column(db.String(20), default="monthly")
    # Frequency: monthly, quarterly, annual


# Junction tables. scope_kind is "sector" or "subsector", scope_name the
# matching sector/subsector name. A row is identified by its full scope tuple.

class SectorStandards(db.Model):
    __tablename__ = "sector_standards"
    __table_args__ = (
        db.UniqueConstraint("scope_kind", "scope_name", name="uq_sector_standards_scope"),
    )

    id = db.Column(db.Integer, primary_key=True)
    scope_kind = db.Column(db.String(16), nullable=False)
    scope_name = db.Column(db.String(256), nullable=False)
    standard_codes = db.Column(db.JSON, nullable=False, default=list)


class StandardIssues(db.Model):
    __tablename__ = "standard_issues"
    __table_args__ = (
        db.UniqueConstraint(
            "scope_kind", "scope_name", "standard_name",
            name="uq_standard_issues_scope",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    scope_kind = db.Column(db.String(16), nullable=False)
    scope_name = db.Column(db.String(256), nullable=False)
    standard_name = db.Column(db.String(256), nullable=False)
    issue_codes = db.Column(db.JSON, nullable=False, default=list)


class IssueCriteria(db.Model):
    __tablename__ = "issue_criteria"
    __table_args__ = (
        db.UniqueConstraint(
            "scope_kind", "scope_name", "standard_name", "issue_name",
            name="uq_issue_criteria_scope",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    scope_kind = db.Column(db.String(16), nullable=False)
    scope_name = db.Column(db.String(256), nullable=False)
    standard_name = db.Column(db.String(256), nullable=False)
    issue_name = db.Column(db.String(256), nullable=False)
    criteria_codes = db.Column(db.JSON, nullable=False, default=list)


class CriteriaIndicators(db.Model):
    __tablename__ = "criteria_indicators"
    __table_args__ = (
        db.UniqueConstraint(
            "scope_kind", "scope_name", "standard_name", "issue_name", "criteria_name",
            name="uq_criteria_indicators_scope",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    scope_kind = db.Column(db.String(16), nullable=False)
    scope_name = db.Column(db.String(256), nullable=False)
    standard_name = db.Column(db.String(256), nullable=False)
    issue_name = db.Column(db.String(256), nullable=False)
    criteria_name = db.Column(db.String(256), nullable=False)
    indicator_codes = db.Column(db.JSON, nullable=False, default=list)
    unit = db.Column(db.String(64), nullable=True)


# =========================================================================
# Per-organization records, partitioned by organization name
# =========================================================================

class Organization(db.Model):
    __tablename__ = "organizations"

    name = db.Column(db.String(256), primary_key=True)
    organization_type = db.Column(db.String(32), nullable=False, default="simple")
    # Type: simple, with_subsidiaries, group
    description = db.Column(db.Text, default="")
    address = db.Column(db.String(256), nullable=False)
    city = db.Column(db.String(128), nullable=False)
    country = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(64), nullable=False)
    email = db.Column(db.String(120), nullable=False)
    website = db.Column(db.String(256), default="")
    created_at = db.Column(db.DateTime, default=_now)

    business_lines = db.relationship(
        "BusinessLine", backref="organization", lazy="dynamic", cascade="all, delete-orphan"
    )
    subsidiaries = db.relationship(
        "Subsidiary", backref="organization", lazy="dynamic", cascade="all, delete-orphan"
    )
    sites = db.relationship(
        "Site", backref="organization", lazy="dynamic", cascade="all, delete-orphan"
    )


class BusinessLine(db.Model):
    __tablename__ = "business_lines"

    id = db.Column(db.Integer, primary_key=True)
    organization_name = db.Column(
        db.String(256), db.ForeignKey("organizations.name"), nullable=False
    )
    name = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text, default="")


class Subsidiary(db.Model):
    __tablename__ = "subsidiaries"

    id = db.Column(db.Integer, primary_key=True)
    organization_name = db.Column(
        db.String(256), db.ForeignKey("organizations.name"), nullable=False
    )
    business_line_name = db.Column(db.String(256), nullable=True)
    name = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text, default="")
    address = db.Column(db.String(256), nullable=False)
    city = db.Column(db.String(128), nullable=False)
    country = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(64), nullable=False)
    email = db.Column(db.String(120), nullable=False)
    website = db.Column(db.String(256), default="")


class Site(db.Model):
    __tablename__ = "sites"

    id = db.Column(db.Integer, primary_key=True)
    organization_name = db.Column(
        db.String(256), db.ForeignKey("organizations.name"), nullable=False
    )
    business_line_name = db.Column(db.String(256), nullable=True)
    subsidiary_name = db.Column(db.String(256), nullable=True)
    name = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text, default="")
    address = db.Column(db.String(256), nullable=False)
    city = db.Column(db.String(128), nullable=False)
    country = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(64), nullable=False)
    email = db.Column(db.String(120), nullable=False)


class OrganizationSelection(db.Model):
    """Snapshot of the taxonomy subset an organization picked in the wizard."""
    __tablename__ = "organization_selections"

    organization_name = db.Column(
        db.String(256), db.ForeignKey("organizations.name"), primary_key=True
    )
    sector_name = db.Column(db.String(256), nullable=False)
    subsector_name = db.Column(db.String(256), nullable=True)
    standard_codes = db.Column(db.JSON, nullable=False, default=list)
    issue_codes = db.Column(db.JSON, nullable=False, default=list)
    criteria_codes = db.Column(db.JSON, nullable=False, default=list)
    indicator_codes = db.Column(db.JSON, nullable=False, default=list)
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now)


class Process(db.Model):
    __tablename__ = "processes"
    __table_args__ = (
        db.UniqueConstraint("organization_name", "code", name="uq_processes_org_code"),
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(16), nullable=False)
    name = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text, default="")
    indicator_codes = db.Column(db.JSON, nullable=False, default=list)
    organization_name = db.Column(
        db.String(256), db.ForeignKey("organizations.name"), nullable=False, index=True
    )
    created_at = db.Column(db.DateTime, default=_now)
