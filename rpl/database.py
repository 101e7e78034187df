"""SQLite-backed persistence for tournament registrations."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .models import PaymentStatus, Registration

# Column definitions expected by the current code. Existing tables created by
# older deployments gain any missing column with its default; nothing is
# dropped or rewritten.
EXPECTED_COLUMNS: Dict[str, str] = {
    "teamName": "TEXT",
    "playerName": "TEXT",
    "playerMobile": "TEXT",
    "playerEmail": "TEXT",
    "playerRole": "TEXT",
    "jerseyNumber": "TEXT",
    "jerseySize": "TEXT",
    "category": "TEXT",
    "screenshot": "TEXT",
    "aadhaar": "TEXT",
    "passport_photo": "TEXT",
    "payment_screenshot": "TEXT",
    "payment_status": "TEXT DEFAULT 'pending'",
    "created_at": "INTEGER",
}

# Registration attribute -> column name.
_COLUMN_FOR: Dict[str, str] = {
    "team_name": "teamName",
    "player_name": "playerName",
    "player_mobile": "playerMobile",
    "player_email": "playerEmail",
    "player_role": "playerRole",
    "jersey_number": "jerseyNumber",
    "jersey_size": "jerseySize",
    "category": "category",
    "screenshot": "screenshot",
    "aadhaar": "aadhaar",
    "passport_photo": "passport_photo",
    "payment_screenshot": "payment_screenshot",
}

_BUSY_TIMEOUT_SECONDS = 10.0


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the registrations database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "rpl.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> int:
    return round(value.timestamp() * 1000)


def _parse_datetime(value: object) -> Optional[datetime]:
    if value is None:
        return None
    millis = int(value)
    seconds = datetime.fromtimestamp(millis // 1000, tz=timezone.utc)
    return seconds + timedelta(milliseconds=millis % 1000)


class Database:
    """Simple wrapper around SQLite for persisting registrations."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path, timeout=_BUSY_TIMEOUT_SECONDS, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def initialize(self) -> List[str]:
        """Create the registrations table and add any missing columns.

        Returns the names of the columns that had to be added.
        """

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS registrations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    teamName TEXT,
                    playerName TEXT,
                    playerMobile TEXT,
                    playerEmail TEXT,
                    playerRole TEXT,
                    jerseyNumber TEXT,
                    jerseySize TEXT,
                    category TEXT,
                    screenshot TEXT,
                    aadhaar TEXT,
                    passport_photo TEXT,
                    payment_screenshot TEXT,
                    payment_status TEXT DEFAULT 'pending',
                    created_at INTEGER
                )
                """
            )

            columns = {
                row["name"]
                for row in conn.execute("PRAGMA table_info(registrations)").fetchall()
            }
            added: List[str] = []
            for column, definition in EXPECTED_COLUMNS.items():
                if column in columns:
                    continue
                conn.execute(f"ALTER TABLE registrations ADD COLUMN {column} {definition}")
                added.append(column)
        return added

    # ------------------------------------------------------------------
    # Registrations
    # ------------------------------------------------------------------
    def insert_registration(
        self,
        *,
        player_name: str,
        player_mobile: str,
        player_email: str,
        player_role: str,
        passport_photo: str,
        payment_screenshot: str,
        created_at: Optional[datetime] = None,
        **optional: Optional[str],
    ) -> int:
        """Insert a pending registration and return its generated id."""

        unknown = set(optional) - set(_COLUMN_FOR)
        if unknown:
            raise ValueError(f"Unknown registration fields: {', '.join(sorted(unknown))}")

        values: Dict[str, object] = {
            "player_name": player_name,
            "player_mobile": player_mobile,
            "player_email": player_email,
            "player_role": player_role,
            "passport_photo": passport_photo,
            "payment_screenshot": payment_screenshot,
        }
        values.update({key: value or None for key, value in optional.items()})

        columns = [_COLUMN_FOR[key] for key in values]
        params = list(values.values())
        columns += ["payment_status", "created_at"]
        params += [
            PaymentStatus.PENDING.value,
            _serialize_datetime(created_at or _current_timestamp()),
        ]

        placeholders = ", ".join("?" for _ in columns)
        with self._connect() as conn:
            cursor = conn.execute(
                f"INSERT INTO registrations ({', '.join(columns)}) VALUES ({placeholders})",
                params,
            )
            return int(cursor.lastrowid)

    def get_registration(self, registration_id: int) -> Optional[Registration]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM registrations WHERE id = ?",
                (registration_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_registration(row)

    def list_registrations(self) -> List[Registration]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM registrations ORDER BY id DESC").fetchall()
        return [self._row_to_registration(row) for row in rows]

    def update_payment_status(self, registration_id: int, status: PaymentStatus) -> bool:
        """Set the payment status, returning ``False`` when the id is unknown."""

        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE registrations SET payment_status = ? WHERE id = ?",
                (PaymentStatus(status).value, registration_id),
            )
            return cursor.rowcount > 0

    def delete_registration(self, registration_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM registrations WHERE id = ?",
                (registration_id,),
            )
            return cursor.rowcount > 0

    def _row_to_registration(self, row: sqlite3.Row) -> Registration:
        keys = set(row.keys())

        def _optional(column: str) -> Optional[str]:
            if column not in keys or row[column] is None:
                return None
            return str(row[column])

        raw_status = _optional("payment_status")
        return Registration(
            id=int(row["id"]),
            player_name=_optional("playerName") or "",
            player_mobile=_optional("playerMobile") or "",
            player_email=_optional("playerEmail") or "",
            player_role=_optional("playerRole") or "",
            passport_photo=_optional("passport_photo"),
            payment_screenshot=_optional("payment_screenshot"),
            payment_status=PaymentStatus(raw_status) if raw_status else PaymentStatus.PENDING,
            created_at=_parse_datetime(row["created_at"]) if "created_at" in keys else None,
            team_name=_optional("teamName"),
            jersey_number=_optional("jerseyNumber"),
            jersey_size=_optional("jerseySize"),
            category=_optional("category"),
            screenshot=_optional("screenshot"),
            aadhaar=_optional("aadhaar"),
        )


__all__ = ["Database", "EXPECTED_COLUMNS", "resolve_database_path"]
