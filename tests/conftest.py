from __future__ import annotations

from pathlib import Path

import pytest

from core.db import SqliteStore


class StubLogger:
    def __init__(self) -> None:
        self.events = []

    def info(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("info", event, extra))

    def warning(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("warning", event, extra))

    def error(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("error", event, extra))

    def event(self, *, event: str, phase: str, ok: bool, **extra):  # pragma: no cover - recorder
        self.events.append(("event", event, phase, ok, extra))

    def failure(self, event: str, phase: str, err: BaseException, **extra):  # pragma: no cover - recorder
        self.events.append(("error", event, {"phase": phase, "err": type(err).__name__, **extra}))

    def names(self):
        return [entry[1] for entry in self.events]


def seed_clinic(store: SqliteStore) -> None:
    conn = store.connection
    conn.execute("CREATE TABLE patients (id INTEGER PRIMARY KEY, name TEXT NOT NULL, notes TEXT)")
    conn.execute(
        "CREATE TABLE prescriptions (id INTEGER PRIMARY KEY, patient_id INTEGER REFERENCES patients(id), "
        "drug TEXT, image TEXT)"
    )
    conn.executemany(
        "INSERT INTO patients (id, name, notes) VALUES (?, ?, ?)",
        [
            (1, "Amira Haddad", "Allergic to penicillin"),
            (2, "Jonas Berg", None),
            (3, "Lê Thị Hoa", "Follow-up in 2 weeks ✓"),
        ],
    )
    conn.executemany(
        "INSERT INTO prescriptions (patient_id, drug, image) VALUES (?, ?, ?)",
        [(1, "Amoxicillin", "rx-1.png"), (3, "Ibuprofen", "rx-3.jpg")],
    )


def rows(store: SqliteStore, table: str = "patients"):
    return store.connection.execute(f"SELECT * FROM {table} ORDER BY id").fetchall()


@pytest.fixture()
def logger() -> StubLogger:
    return StubLogger()


@pytest.fixture()
def store(tmp_path: Path):
    clinic = SqliteStore(tmp_path / "data" / "clinic.db").open()
    try:
        yield clinic
    finally:
        clinic.close()
