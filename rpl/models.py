"""Domain models for tournament registrations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

# Form field name -> attribute name. Field names are what the signup page posts
# and what validation messages refer to.
REQUIRED_FIELDS: Dict[str, str] = {
    "playerName": "player_name",
    "playerMobile": "player_mobile",
    "playerEmail": "player_email",
    "playerRole": "player_role",
}
OPTIONAL_FIELDS: Dict[str, str] = {
    "teamName": "team_name",
    "jerseyNumber": "jersey_number",
    "jerseySize": "jersey_size",
    "category": "category",
}

PAYMENT_SCREENSHOT = "payment_screenshot"
PASSPORT_PHOTO = "passport_photo"
MANDATORY_UPLOADS = (PAYMENT_SCREENSHOT, PASSPORT_PHOTO)
OPTIONAL_UPLOADS = ("screenshot", "aadhaar")


class PaymentStatus(str, Enum):
    """Payment review state of a registration."""

    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class NotificationStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RegistrationForm:
    """Text fields submitted with a registration, before validation."""

    player_name: Optional[str] = None
    player_mobile: Optional[str] = None
    player_email: Optional[str] = None
    player_role: Optional[str] = None
    team_name: Optional[str] = None
    jersey_number: Optional[str] = None
    jersey_size: Optional[str] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class Registration:
    """A persisted registration record."""

    id: int
    player_name: str
    player_mobile: str
    player_email: str
    player_role: str
    passport_photo: Optional[str]
    payment_screenshot: Optional[str]
    payment_status: PaymentStatus
    created_at: Optional[datetime]
    team_name: Optional[str] = None
    jersey_number: Optional[str] = None
    jersey_size: Optional[str] = None
    category: Optional[str] = None
    screenshot: Optional[str] = None
    aadhaar: Optional[str] = None

    def asset_references(self) -> Dict[str, str]:
        """Return every stored upload reference keyed by its form field."""

        candidates = {
            PAYMENT_SCREENSHOT: self.payment_screenshot,
            PASSPORT_PHOTO: self.passport_photo,
            "screenshot": self.screenshot,
            "aadhaar": self.aadhaar,
        }
        return {name: ref for name, ref in candidates.items() if ref}


@dataclass(frozen=True)
class NotificationReport:
    """Advisory outcome of telling a player their payment was verified."""

    status: NotificationStatus
    error: Optional[str] = None


@dataclass
class RemovalReport:
    """Per-asset outcome of deleting a registration."""

    registration_id: int
    removed: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failed


__all__ = [
    "MANDATORY_UPLOADS",
    "NotificationReport",
    "NotificationStatus",
    "OPTIONAL_FIELDS",
    "OPTIONAL_UPLOADS",
    "PASSPORT_PHOTO",
    "PAYMENT_SCREENSHOT",
    "PaymentStatus",
    "REQUIRED_FIELDS",
    "Registration",
    "RegistrationForm",
    "RemovalReport",
]
