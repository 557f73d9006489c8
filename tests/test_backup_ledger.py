import json
import threading

import pytest

from backup.ledger import HistoryLedger, SettingsStore
from backup.types import BackupHistoryItem, BackupSettings, format_file_size


def _item(index: int) -> BackupHistoryItem:
    return BackupHistoryItem(
        id=f"id-{index}",
        filename=f"clinicvault_backup_2024-03-01_10-00-{index % 60:02d}.db",
        created_at=f"2024-03-01T10:00:{index % 60:02d}",
        size=index * 10,
    )


def test_history_is_bounded_and_newest_first(tmp_path):
    ledger = HistoryLedger(tmp_path / "backup_history.json", limit=50)
    for index in range(50):
        ledger.append(_item(index))

    assert len(ledger.load()) == 50

    ledger.append(_item(50))
    items = ledger.load()

    assert len(items) == 50
    assert items[0].id == "id-50"
    assert items[-1].id == "id-1"
    assert "id-0" not in {item.id for item in items}


def test_history_persists_camel_case_records(tmp_path):
    path = tmp_path / "backup_history.json"
    HistoryLedger(path).append(_item(3))

    payload = json.loads(path.read_text(encoding="utf-8"))

    assert payload == [
        {
            "id": "id-3",
            "filename": "clinicvault_backup_2024-03-01_10-00-03.db",
            "createdAt": "2024-03-01T10:00:03",
            "size": 30,
            "type": "manual",
        }
    ]


def test_history_tolerates_corrupt_file(tmp_path):
    path = tmp_path / "backup_history.json"
    path.write_text("{not json", encoding="utf-8")

    assert HistoryLedger(path).load() == []


def test_history_drops_malformed_entries(tmp_path):
    path = tmp_path / "backup_history.json"
    path.write_text(json.dumps([_item(1).to_dict(), {"filename": "missing-id"}, "junk"]), encoding="utf-8")

    assert [item.id for item in HistoryLedger(path).load()] == ["id-1"]


def test_history_drops_entries_with_unreadable_timestamps(tmp_path):
    path = tmp_path / "backup_history.json"
    bad = {**_item(2).to_dict(), "createdAt": "yesterday"}
    path.write_text(json.dumps([_item(1).to_dict(), bad, {**_item(3).to_dict(), "createdAt": 17}]), encoding="utf-8")

    assert [item.id for item in HistoryLedger(path).load()] == ["id-1"]


def test_concurrent_appends_keep_every_entry(tmp_path):
    ledger = HistoryLedger(tmp_path / "backup_history.json", limit=1000)
    start = threading.Barrier(8)

    def writer(worker: int) -> None:
        start.wait()
        for index in range(20):
            ledger.append(_item(worker * 100 + index))

    threads = [threading.Thread(target=writer, args=(worker,)) for worker in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    items = ledger.load()
    assert len(items) == 160
    assert len({item.id for item in items}) == 160


def test_settings_defaults_and_update(tmp_path):
    store = SettingsStore(tmp_path / "backup_settings.json")

    assert store.load() == BackupSettings()

    updated = store.update(auto_backup_enabled=True, auto_backup_interval="weekly")

    assert updated.auto_backup_enabled is True
    assert SettingsStore(store.path).load().auto_backup_interval == "weekly"
    assert json.loads(store.path.read_text(encoding="utf-8"))["autoBackupEnabled"] is True


def test_settings_reject_unknown_fields(tmp_path):
    store = SettingsStore(tmp_path / "backup_settings.json")

    with pytest.raises(AttributeError):
        store.update(cloud_sync=True)


def test_settings_unknown_interval_falls_back_to_daily():
    settings = BackupSettings.from_dict({"autoBackupEnabled": True, "autoBackupInterval": "hourly"})

    assert settings.auto_backup_interval == "daily"


@pytest.mark.parametrize(
    "size,label",
    [(0, "0 B"), (1023, "1023 B"), (1536, "1.5 KB"), (5 * 1024 * 1024, "5.0 MB")],
)
def test_format_file_size(size, label):
    assert format_file_size(size) == label
