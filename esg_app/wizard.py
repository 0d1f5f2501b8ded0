"""
Per-user wizard state for the taxonomy configuration process.

A WizardSession is rebuilt from the Flask session cookie at the start of a
request, handed to the step controller, and written back with save(). It is
never stored in the database.

Changing the sector clears the subsector only. Standards, issues, criteria and
indicators chosen under the previous sector are kept as they are.
"""

FIRST_STEP = 1
LAST_STEP = 7

STEPS = {
    1: "sectors",
    2: "standards",
    3: "issues",
    4: "criteria",
    5: "indicators",
    6: "company",
    7: "users",
}

# Organization types that show the business-line / subsidiary sub-forms
STRUCTURED_ORGANIZATION_TYPES = ("with_subsidiaries", "group")

SESSION_KEY = "wizard"

_LIST_FIELDS = (
    "selected_standards",
    "selected_issues",
    "selected_criteria",
    "selected_indicators",
)


class WizardSession:

    def __init__(self):
        self.current_step = FIRST_STEP
        self.selected_sector = None
        self.selected_subsector = None
        self.selected_standards = []
        self.selected_issues = []
        self.selected_criteria = []
        self.selected_indicators = []
        self.organization_created = False
        self.users_created = False

    # -- persistence in the cookie session ---------------------------------

    @classmethod
    def load(cls, store):
        wizard = cls()
        data = store.get(SESSION_KEY) or {}
        step = data.get("current_step", FIRST_STEP)
        if isinstance(step, int) and FIRST_STEP <= step <= LAST_STEP:
            wizard.current_step = step
        wizard.selected_sector = data.get("selected_sector")
        wizard.selected_subsector = data.get("selected_subsector")
        for field in _LIST_FIELDS:
            setattr(wizard, field, list(data.get(field) or []))
        wizard.organization_created = bool(data.get("organization_created"))
        wizard.users_created = bool(data.get("users_created"))
        return wizard

    def save(self, store):
        store[SESSION_KEY] = self.to_dict()

    def discard(self, store):
        store.pop(SESSION_KEY, None)
        self.__init__()

    def to_dict(self):
        return {
            "current_step": self.current_step,
            "selected_sector": self.selected_sector,
            "selected_subsector": self.selected_subsector,
            "selected_standards": list(self.selected_standards),
            "selected_issues": list(self.selected_issues),
            "selected_criteria": list(self.selected_criteria),
            "selected_indicators": list(self.selected_indicators),
            "organization_created": self.organization_created,
            "users_created": self.users_created,
        }

    # -- mutators ------------------------------------------------------------

    def set_sector(self, sector_name):
        if self.selected_sector == sector_name:
            self.selected_sector = None
        else:
            self.selected_sector = sector_name
        self.selected_subsector = None

    def set_subsector(self, subsector_name):
        if self.selected_subsector == subsector_name:
            self.selected_subsector = None
        else:
            self.selected_subsector = subsector_name

    @staticmethod
    def _toggle(values, name):
        if name in values:
            values.remove(name)
        else:
            values.append(name)

    def toggle_standard(self, name):
        self._toggle(self.selected_standards, name)

    def toggle_issue(self, name):
        self._toggle(self.selected_issues, name)

    def toggle_criteria(self, name):
        self._toggle(self.selected_criteria, name)

    def toggle_indicator(self, name):
        self._toggle(self.selected_indicators, name)

    def set_current_step(self, step):
        if not FIRST_STEP <= step <= LAST_STEP:
            raise ValueError(f"Wizard step must be between {FIRST_STEP} and {LAST_STEP}")
        self.current_step = step

    def set_organization_created(self, created=True):
        self.organization_created = bool(created)

    def set_users_created(self, created=True):
        self.users_created = bool(created)

    # -- queries ---------------------------------------------------------------

    @property
    def is_complete(self):
        return self.current_step == LAST_STEP and self.users_created

    def missing_prerequisite(self, step):
        """The step to fall back to when `step` cannot be shown yet, else None."""
        if step == 2 and not self.selected_sector:
            return 1
        if step == 3 and (not self.selected_sector or not self.selected_standards):
            return 2
        if step == 4 and not self.selected_issues:
            return 3
        if step == 5 and not self.selected_criteria:
            return 4
        return None


def shows_structure_forms(organization_type):
    return organization_type in STRUCTURED_ORGANIZATION_TYPES
