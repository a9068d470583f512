"""Tests for JSON backups."""

from datetime import datetime, timezone

import pytest

from backup import (
    BACKUP_VERSION,
    BackupFormatError,
    dumps_backup,
    export_backup,
    import_backup,
    loads_backup,
)
from database import FamilyStore
from models import DatePlace


NOW = datetime(2026, 10, 17, 9, 30, tzinfo=timezone.utc)


class TestExport:
    """Tests for the backup snapshot."""

    def test_contents(self, couple_with_child, store):
        william, elizabeth, john, family = couple_with_child
        store.update_person_photo(william.id, b"\x89PNG", b"thumb")
        store.create_tree("Main", root_person_id=william.id)

        data = export_backup(store, now=NOW)

        assert data["version"] == BACKUP_VERSION
        assert data["exportDate"] == NOW.isoformat()
        assert [p["id"] for p in data["persons"]] == [william.id, elizabeth.id, john.id]
        assert data["persons"][0]["photo"] == "iVBORw=="
        assert "photoThumbnail" not in data["persons"][0]
        assert data["families"][0]["childIds"] == [john.id]
        assert data["trees"][0]["rootPersonId"] == william.id

    def test_records_last_backup_date(self, store):
        export_backup(store, now=NOW)
        assert store.get_settings().last_backup_date == NOW

    def test_deleted_entities_are_left_out(self, couple_with_child, store):
        _, elizabeth, _, _ = couple_with_child
        store.delete_person(elizabeth.id)
        data = export_backup(store, now=NOW)
        assert elizabeth.id not in {p["id"] for p in data["persons"]}


class TestImport:
    """Tests for restoring a backup."""

    def test_restore_into_empty_database(self, couple_with_child, store):
        william, _, john, family = couple_with_child
        store.update_person(william.id, birth_place="Leeds")
        text = dumps_backup(export_backup(store, now=NOW))

        target = FamilyStore.open(":memory:")
        result = import_backup(target, loads_backup(text))

        assert (result.persons, result.families, result.trees) == (3, 1, 0)
        restored = target.get_person(william.id)
        assert restored.birth == DatePlace("1950", "Leeds")
        assert restored.rev == store.get_person(william.id).rev
        assert target.get_family(family.id).child_ids == [john.id]
        target.close()

    def test_existing_ids_are_overwritten(self, couple_with_child, store):
        william, _, _, _ = couple_with_child
        data = export_backup(store, now=NOW)
        store.update_person(william.id, given_names="Bill")

        import_backup(store, data)
        assert store.get_person(william.id).given_names == "William"
        assert len(store.get_all_persons()) == 3

    def test_photos_survive(self, store):
        person = store.create_person("Ada")
        store.update_person_photo(person.id, b"\x00\x01\x02")
        data = export_backup(store, now=NOW)
        store.clear_all()
        import_backup(store, data)
        assert store.get_person(person.id).photo == b"\x00\x01\x02"

    def test_javascript_timestamps_are_accepted(self, store):
        data = {
            "version": 1,
            "exportDate": "2026-10-17T09:30:00.000Z",
            "persons": [
                {
                    "id": "p1",
                    "givenNames": "Ada",
                    "surname": "King",
                    "sex": "female",
                    "createdAt": "2024-01-01T00:00:00.000Z",
                    "updatedAt": "2024-01-02T00:00:00.000Z",
                }
            ],
        }
        result = import_backup(store, data)
        assert (result.persons, result.families, result.trees) == (1, 0, 0)
        assert store.get_person("p1").updated_at == datetime(2024, 1, 2, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "data",
        [
            {},
            {"persons": []},
            {"version": 1},
            {"version": 99, "persons": []},
            {"version": "1", "persons": []},
            {"version": 1, "persons": "nope"},
            {"version": 1, "persons": [{"givenNames": "No id"}]},
            {"version": 1, "persons": [], "families": [{"id": "f", "spouse1Id": "a", "childIds": ["a"]}]},
            {"version": 1, "persons": [], "families": [{"id": "f", "spouse1Id": "a", "spouse2Id": "a"}]},
        ],
    )
    def test_invalid_backups_write_nothing(self, store, data):
        with pytest.raises(BackupFormatError):
            import_backup(store, data)
        assert store.get_all_persons(include_deleted=True) == []
        assert store.get_all_families(include_deleted=True) == []

    def test_loads_rejects_bad_json(self):
        with pytest.raises(BackupFormatError):
            loads_backup("{not json")
        with pytest.raises(BackupFormatError):
            loads_backup("[1, 2]")

    def test_empty_person_list_is_valid(self, store):
        result = import_backup(store, {"version": 1, "persons": []})
        assert result.persons == 0
