"""Three-step sign-up form: email, credentials, affiliation and consent."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .errors import InputError
from .schemas import Role
from .session import SessionStore
from .supabase import AuthResult

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
PASSWORD_PATTERN = re.compile(
    r"^(?=.*[A-Za-z])(?=.*\d)(?=.*[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]).{8,}$"
)

LAST_STEP = 3


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.search(email.strip()))


def is_valid_password(password: str) -> bool:
    """At least 8 characters with a letter, a digit and a symbol."""
    return bool(PASSWORD_PATTERN.match(password))


class EmailStatus(str, Enum):
    IDLE = "idle"
    INVALID = "invalid"
    VALID = "valid"


class WizardMove(str, Enum):
    ADVANCED = "advanced"
    SUBMIT = "submit"
    WENT_BACK = "went_back"
    EXIT_TO_SIGN_IN = "exit_to_sign_in"


@dataclass
class SignupForm:
    email: str = ""
    name: str = ""
    password: str = ""
    confirm_password: str = ""
    organization: str = ""
    role: Role = Role.GUARDIAN


@dataclass
class Agreements:
    service: bool = False
    privacy: bool = False
    location: bool = False

    @property
    def all(self) -> bool:
        return self.service and self.privacy and self.location

    def toggle(self, key: str) -> None:
        if key == "all":
            value = not self.all
            self.service = self.privacy = self.location = value
            return
        if key not in ("service", "privacy", "location"):
            raise ValueError(f"Unknown agreement: {key}")
        setattr(self, key, not getattr(self, key))


@dataclass
class SignupOutcome:
    result: AuthResult
    sign_in_email: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result.error is None


@dataclass
class SignupWizard:
    step: int = 1
    form: SignupForm = field(default_factory=SignupForm)
    agreements: Agreements = field(default_factory=Agreements)
    email_status: EmailStatus = EmailStatus.IDLE
    email_message: str = ""
    submitting: bool = False

    def set_email(self, email: str) -> None:
        self.form.email = email
        self.email_status = EmailStatus.IDLE
        self.email_message = ""

    def check_email(self) -> bool:
        """Validate the address format.

        Availability is not looked up: any well-formed address is reported as
        available and a duplicate only surfaces when sign-up is submitted.
        """
        if not is_valid_email(self.form.email):
            self.email_status = EmailStatus.INVALID
            self.email_message = "Please enter a valid email address."
            return False
        self.email_status = EmailStatus.VALID
        self.email_message = "This email is available."
        return True

    @property
    def password_matches(self) -> bool:
        return bool(self.form.password) and self.form.password == self.form.confirm_password

    def step_error(self, step: int) -> Optional[str]:
        if step == 1:
            if self.email_status != EmailStatus.VALID:
                return "Check your email address first."
        elif step == 2:
            if not self.form.name.strip():
                return "Please enter your name."
            if not is_valid_password(self.form.password):
                return "Use at least 8 characters with a letter, a number and a symbol."
            if not self.password_matches:
                return "The passwords do not match."
        elif step == 3:
            if not self.agreements.all:
                return "Please accept all of the required terms."
        return None

    @property
    def can_go_next(self) -> bool:
        return self.step_error(self.step) is None

    def next(self) -> WizardMove:
        error = self.step_error(self.step)
        if error:
            raise InputError(error)
        if self.step < LAST_STEP:
            self.step += 1
            return WizardMove.ADVANCED
        return WizardMove.SUBMIT

    def back(self) -> WizardMove:
        if self.step == 1:
            return WizardMove.EXIT_TO_SIGN_IN
        self.step -= 1
        return WizardMove.WENT_BACK

    def validate_all(self) -> None:
        """Run every step's guard in order, as a full pass through the form would."""
        self.check_email()
        for step in range(1, LAST_STEP + 1):
            error = self.step_error(step)
            if error:
                raise InputError(error)

    def metadata(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "name": self.form.name.strip(),
            "role": self.form.role.value,
            "agreements": {
                "service": self.agreements.service,
                "privacy": self.agreements.privacy,
                "location": self.agreements.location,
            },
        }
        organization = self.form.organization.strip()
        if organization:
            metadata["affiliation"] = organization
        return metadata

    def reset(self) -> None:
        self.step = 1
        self.form = SignupForm()
        self.agreements = Agreements()
        self.email_status = EmailStatus.IDLE
        self.email_message = ""

    async def submit(self, store: SessionStore) -> SignupOutcome:
        if self.step != LAST_STEP or self.submitting:
            raise InputError("Sign-up is not ready to submit.")
        error = self.step_error(LAST_STEP)
        if error:
            raise InputError(error)
        email = self.form.email.strip()
        self.submitting = True
        try:
            result = await store.sign_up(email, self.form.password, self.metadata())
        finally:
            self.submitting = False
        if result.error:
            logger.warning("sign-up failed: %s", result.error.message)
            return SignupOutcome(result=result)
        self.reset()
        return SignupOutcome(result=result, sign_in_email=email)
