"""Registration lifecycle: intake, payment review, and removal."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Mapping, Optional

from .database import Database
from .errors import MissingUpload, NotFound, NotifierFailure, StorageFailure, ValidationError
from .models import (
    MANDATORY_UPLOADS,
    OPTIONAL_FIELDS,
    OPTIONAL_UPLOADS,
    PASSPORT_PHOTO,
    PAYMENT_SCREENSHOT,
    NotificationReport,
    NotificationStatus,
    PaymentStatus,
    REQUIRED_FIELDS,
    Registration,
    RegistrationForm,
    RemovalReport,
)
from .notifier import Notifier
from .uploads import URL_PREFIX, UploadBinder

logger = logging.getLogger("rpl.registrations")


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


class _RecordLocks:
    """One lock per registration id, so a record has a single writer at a time."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}
        self._users: Dict[int, int] = {}

    @contextmanager
    def hold(self, registration_id: int) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(registration_id, threading.Lock())
            self._users[registration_id] = self._users.get(registration_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                remaining = self._users[registration_id] - 1
                if remaining:
                    self._users[registration_id] = remaining
                else:
                    self._users.pop(registration_id, None)
                    self._locks.pop(registration_id, None)


class RegistrationService:
    """Coordinate the record store, the upload binder, and the notifier.

    Payment status moves from ``pending`` to ``verified`` or ``rejected`` only
    through :meth:`verify` and :meth:`reject`. Both may be applied again to an
    already resolved record and simply overwrite the status.
    """

    def __init__(
        self,
        database: Database,
        uploads: UploadBinder,
        *,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._database = database
        self._uploads = uploads
        self._notifier = notifier
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks = _RecordLocks()

    @property
    def uploads(self) -> UploadBinder:
        return self._uploads

    @property
    def notifier(self) -> Optional[Notifier]:
        return self._notifier

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------
    def validate(self, form: RegistrationForm) -> RegistrationForm:
        """Trim every field and make sure the required ones are present."""

        cleaned = {
            attribute: _clean(getattr(form, attribute))
            for attribute in (*REQUIRED_FIELDS.values(), *OPTIONAL_FIELDS.values())
        }
        missing = [name for name, attribute in REQUIRED_FIELDS.items() if not cleaned[attribute]]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                fields=missing,
            )
        return replace(form, **cleaned)

    def check_uploads(self, uploads: Mapping[str, Optional[object]]) -> None:
        missing = [name for name in MANDATORY_UPLOADS if not uploads.get(name)]
        if missing:
            raise MissingUpload(
                f"{' and '.join(missing)} required",
                fields=missing,
            )

    def _stored_references(self, uploads: Mapping[str, Optional[str]]) -> Dict[str, str]:
        """Map each supplied upload to the canonical reference of its stored file.

        Every reference must name a file currently held by the upload binder.
        """

        stored: Dict[str, str] = {}
        unresolved: List[str] = []
        for name in (*MANDATORY_UPLOADS, *OPTIONAL_UPLOADS):
            reference = uploads.get(name)
            if not reference:
                continue
            path = self._uploads.resolve(reference)
            if path is None:
                unresolved.append(name)
            else:
                stored[name] = URL_PREFIX + path.name
        if unresolved:
            raise MissingUpload(
                f"Uploaded file not found for {', '.join(unresolved)}",
                fields=unresolved,
            )
        return stored

    def submit(self, form: RegistrationForm, uploads: Mapping[str, str]) -> int:
        """Persist a new pending registration and return its id.

        ``uploads`` maps form field names to references already produced by
        the upload binder.
        """

        valid = self.validate(form)
        self.check_uploads(uploads)
        stored = self._stored_references(uploads)

        optional = {
            attribute: getattr(valid, attribute) for attribute in OPTIONAL_FIELDS.values()
        }
        optional.update({name: stored.get(name) for name in OPTIONAL_UPLOADS})
        try:
            registration_id = self._database.insert_registration(
                player_name=valid.player_name,
                player_mobile=valid.player_mobile,
                player_email=valid.player_email,
                player_role=valid.player_role,
                passport_photo=stored[PASSPORT_PHOTO],
                payment_screenshot=stored[PAYMENT_SCREENSHOT],
                created_at=self._clock(),
                **optional,
            )
        except sqlite3.Error as exc:
            logger.exception("Failed to save registration for %s", valid.player_name)
            raise StorageFailure(str(exc), code="save_failed") from exc

        logger.info("Saved registration id=%s name=%s", registration_id, valid.player_name)
        return registration_id

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list(self) -> List[Registration]:
        try:
            return self._database.list_registrations()
        except sqlite3.Error as exc:
            logger.exception("Failed to list registrations")
            raise StorageFailure(str(exc), code="db_failed") from exc

    def get(self, registration_id: int) -> Optional[Registration]:
        try:
            return self._database.get_registration(registration_id)
        except sqlite3.Error as exc:
            logger.exception("Failed to load registration %s", registration_id)
            raise StorageFailure(str(exc), code="db_failed") from exc

    # ------------------------------------------------------------------
    # Payment review
    # ------------------------------------------------------------------
    def verify(self, registration_id: int) -> Registration:
        registration = self._set_status(registration_id, PaymentStatus.VERIFIED, "verify_failed")
        logger.info("Registration %s marked verified", registration_id)
        return registration

    def reject(self, registration_id: int) -> Registration:
        registration = self._set_status(registration_id, PaymentStatus.REJECTED, "reject_failed")
        logger.info("Registration %s marked rejected", registration_id)
        return registration

    def _set_status(
        self, registration_id: int, status: PaymentStatus, failure_code: str
    ) -> Registration:
        with self._locks.hold(registration_id):
            try:
                updated = self._database.update_payment_status(registration_id, status)
                registration = (
                    self._database.get_registration(registration_id) if updated else None
                )
            except sqlite3.Error as exc:
                logger.exception("Failed to mark registration %s %s", registration_id, status.value)
                raise StorageFailure(str(exc), code=failure_code) from exc
        if registration is None:
            raise NotFound(f"Registration {registration_id} does not exist")
        return registration

    def notify_verified(self, registration: Registration) -> NotificationReport:
        """Email the player about verification. Never raises."""

        if self._notifier is None or not registration.player_email:
            return NotificationReport(NotificationStatus.SKIPPED)
        try:
            self._notifier.send_verification(registration)
        except NotifierFailure as exc:
            logger.warning(
                "Verification email for registration %s failed (non-fatal): %s",
                registration.id,
                exc,
            )
            return NotificationReport(NotificationStatus.FAILED, error=str(exc))
        except Exception as exc:
            # The status change is already committed; report, never propagate.
            logger.exception("Notifier crashed for registration %s", registration.id)
            return NotificationReport(
                NotificationStatus.FAILED, error=str(exc) or exc.__class__.__name__
            )
        return NotificationReport(NotificationStatus.SENT)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------
    def remove(self, registration_id: int) -> RemovalReport:
        """Delete a registration and, best-effort, its uploaded files."""

        with self._locks.hold(registration_id):
            registration = self.get(registration_id)
            if registration is None:
                raise NotFound(f"Registration {registration_id} does not exist")

            report = RemovalReport(registration_id=registration_id)
            for field_name, reference in registration.asset_references().items():
                try:
                    removed = self._uploads.remove(reference)
                except OSError as exc:
                    logger.warning(
                        "Could not delete %s for registration %s (%s): %s",
                        field_name,
                        registration_id,
                        reference,
                        exc,
                    )
                    report.failed[reference] = str(exc)
                    continue
                if removed:
                    report.removed.append(reference)
                else:
                    report.missing.append(reference)

            try:
                self._database.delete_registration(registration_id)
            except sqlite3.Error as exc:
                logger.exception("Failed to delete registration %s", registration_id)
                raise StorageFailure(str(exc), code="delete_failed") from exc

        logger.info(
            "Deleted registration %s (files removed=%d missing=%d failed=%d)",
            registration_id,
            len(report.removed),
            len(report.missing),
            len(report.failed),
        )
        return report


__all__ = ["RegistrationService"]
