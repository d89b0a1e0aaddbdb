"""Tests for the fragment entity and FragmentService."""

import uuid
from datetime import datetime

import pytest

from fragment_service.fragments import (
    DeleteFailed,
    Fragment,
    FragmentService,
    IOFailure,
    NotFound,
    Unsupported,
    UnsupportedType,
)
from fragment_service.fragments import fragment as fragment_module
from fragment_service.fragments.adapters import MemoryByteStore, MemoryMetadataStore

OWNER = "owner-a"
OTHER = "owner-b"


class FailingDeleteByteStore(MemoryByteStore):
    def delete(self, owner_id, fragment_id):
        raise IOFailure("storage offline")


class FailingDeleteMetadataStore(MemoryMetadataStore):
    def delete(self, owner_id, fragment_id):
        raise IOFailure("metadata store offline")


class TestCreate:
    def test_create_sets_identity_and_timestamps(self, service):
        fragment = service.create(OWNER, "text/plain")
        assert uuid.UUID(fragment.id)
        assert fragment.owner_id == OWNER
        assert fragment.type == "text/plain"
        assert fragment.size == 0
        assert fragment.created == fragment.updated
        assert fragment.created.endswith("Z")
        datetime.fromisoformat(fragment.created.replace("Z", "+00:00"))

    def test_create_generates_unique_ids(self, service):
        ids = {service.create(OWNER, "text/plain").id for _ in range(10)}
        assert len(ids) == 10

    def test_create_keeps_type_parameters(self, service):
        fragment = service.create(OWNER, "text/plain; charset=utf-8")
        assert fragment.type == "text/plain; charset=utf-8"
        assert fragment.mime_type == "text/plain"

    def test_create_rejects_unsupported_type(self, service):
        with pytest.raises(UnsupportedType):
            service.create(OWNER, "application/pdf")

    @pytest.mark.parametrize("size", [-1, 1.5, "3", True])
    def test_create_rejects_invalid_size(self, service, size):
        with pytest.raises(ValueError):
            service.create(OWNER, "text/plain", size)

    def test_create_requires_owner(self, service):
        with pytest.raises(ValueError):
            service.create("", "text/plain")

    def test_create_does_not_persist(self, service):
        fragment = service.create(OWNER, "text/plain")
        with pytest.raises(NotFound):
            service.by_id(OWNER, fragment.id)

    def test_identity_fields_are_read_only(self, service):
        fragment = service.create(OWNER, "text/plain")
        with pytest.raises(AttributeError):
            fragment.type = "text/html"  # type: ignore[misc]
        with pytest.raises(AttributeError):
            fragment.id = "other"  # type: ignore[misc]


class TestDerivedProperties:
    def test_text_fragment(self, service):
        fragment = service.create(OWNER, "text/markdown; charset=utf-8")
        assert fragment.is_text
        assert fragment.formats == ["text/html", "text/markdown", "text/plain"]

    def test_non_text_fragment(self, service):
        fragment = service.create(OWNER, "application/json")
        assert not fragment.is_text
        assert fragment.formats == ["application/json", "application/yaml", "text/plain"]

    def test_to_dict_has_exactly_the_external_fields(self, service):
        fragment = service.create(OWNER, "text/plain")
        assert set(fragment.to_dict()) == {"id", "ownerId", "created", "updated", "type", "size"}


class TestPersistence:
    def test_save_then_by_id(self, service):
        fragment = service.create(OWNER, "text/plain")
        fragment.save()
        loaded = service.by_id(OWNER, fragment.id)
        assert isinstance(loaded, Fragment)
        assert loaded.to_dict() == fragment.to_dict()

    def test_repeated_save_is_safe(self, service):
        fragment = service.create(OWNER, "text/plain")
        fragment.save()
        fragment.save()
        assert service.by_user(OWNER) == [fragment.id]

    def test_set_data_then_get_data(self, service):
        fragment = service.create(OWNER, "text/plain")
        fragment.save()
        fragment.set_data(b"Hello World")
        assert fragment.size == 11
        assert fragment.get_data() == b"Hello World"

        loaded = service.by_id(OWNER, fragment.id)
        assert loaded.size == 11
        assert loaded.get_data() == b"Hello World"

    def test_set_data_persists_size_without_explicit_save(self, service):
        fragment = service.create(OWNER, "text/plain")
        fragment.set_data(bytearray(b"abc"))
        assert service.by_id(OWNER, fragment.id).size == 3

    def test_set_data_accepts_empty_bytes(self, service):
        fragment = service.create(OWNER, "text/plain")
        fragment.set_data(b"")
        assert fragment.size == 0
        assert fragment.get_data() == b""

    def test_set_data_rejects_text(self, service):
        fragment = service.create(OWNER, "text/plain")
        with pytest.raises(TypeError):
            fragment.set_data("not bytes")  # type: ignore[arg-type]

    def test_get_data_before_any_write(self, service):
        fragment = service.create(OWNER, "text/plain")
        fragment.save()
        with pytest.raises(NotFound):
            fragment.get_data()

    def test_sequential_updates_keep_latest_data(self, service):
        fragment = service.create(OWNER, "text/plain")
        fragment.save()
        created = fragment.created
        previous = fragment.updated
        for payload in (b"one", b"three", b"fifteen bytes!!"):
            fragment.set_data(payload)
            assert fragment.updated >= previous
            previous = fragment.updated
        loaded = service.by_id(OWNER, fragment.id)
        assert loaded.get_data() == b"fifteen bytes!!"
        assert loaded.size == 15
        assert loaded.created == created

    def test_updated_never_moves_backwards(self, service, monkeypatch):
        fragment = service.create(OWNER, "text/plain")
        fragment.save()
        before = fragment.updated
        monkeypatch.setattr(fragment_module, "_utcnow", lambda: "2000-01-01T00:00:00.000Z")
        fragment.save()
        assert fragment.updated == before

    def test_convert_reads_and_converts(self, service):
        fragment = service.create(OWNER, "text/markdown")
        fragment.set_data(b"# Title")
        assert b"<h1>Title</h1>" in fragment.convert("html").data
        with pytest.raises(Unsupported):
            fragment.convert("png")


class TestOwnership:
    def test_other_owner_cannot_load(self, service):
        fragment = service.create(OWNER, "text/plain")
        fragment.set_data(b"secret")
        with pytest.raises(NotFound):
            service.by_id(OTHER, fragment.id)

    def test_by_id_unknown(self, service):
        with pytest.raises(NotFound):
            service.by_id(OWNER, "no-such-id")


class TestByUser:
    def test_ids_in_creation_order(self, service):
        ids = []
        for _ in range(3):
            fragment = service.create(OWNER, "text/plain")
            fragment.save()
            ids.append(fragment.id)
        assert service.by_user(OWNER) == ids

    def test_expanded(self, service):
        fragment = service.create(OWNER, "application/json")
        fragment.set_data(b"{}")
        expanded = service.by_user(OWNER, expand=True)
        assert [f.to_dict() for f in expanded] == [fragment.to_dict()]

    def test_unknown_owner_gets_empty_list(self, service):
        assert service.by_user("nobody") == []
        assert service.by_user("nobody", expand=True) == []

    def test_lists_are_per_owner(self, service):
        mine = service.create(OWNER, "text/plain")
        mine.save()
        theirs = service.create(OTHER, "text/plain")
        theirs.save()
        assert service.by_user(OWNER) == [mine.id]
        assert service.by_user(OTHER) == [theirs.id]


class TestDelete:
    def test_delete_removes_metadata_and_data(self, service):
        fragment = service.create(OWNER, "text/plain")
        fragment.set_data(b"bye")
        service.delete(OWNER, fragment.id)
        with pytest.raises(NotFound):
            service.by_id(OWNER, fragment.id)
        with pytest.raises(NotFound):
            fragment.get_data()
        assert fragment.id not in service.by_user(OWNER)

    def test_delete_fragment_without_data(self, service):
        fragment = service.create(OWNER, "text/plain")
        fragment.save()
        service.delete(OWNER, fragment.id)
        assert service.by_user(OWNER) == []

    def test_delete_unknown(self, service):
        with pytest.raises(NotFound):
            service.delete(OWNER, "no-such-id")

    def test_delete_other_owners_fragment(self, service):
        fragment = service.create(OWNER, "text/plain")
        fragment.set_data(b"keep")
        with pytest.raises(NotFound):
            service.delete(OTHER, fragment.id)
        assert service.by_id(OWNER, fragment.id).get_data() == b"keep"

    def test_data_store_failure_raises_delete_failed(self, metadata_store):
        service = FragmentService(metadata=metadata_store, data=FailingDeleteByteStore())
        fragment = service.create(OWNER, "text/plain")
        fragment.set_data(b"stuck")
        with pytest.raises(DeleteFailed) as exc_info:
            service.delete(OWNER, fragment.id)
        assert isinstance(exc_info.value.__cause__, IOFailure)
        # data goes first, so the metadata is untouched
        assert service.by_id(OWNER, fragment.id).size == 5

    def test_metadata_failure_leaves_metadata_without_data(self, byte_store):
        service = FragmentService(metadata=FailingDeleteMetadataStore(), data=byte_store)
        fragment = service.create(OWNER, "text/plain")
        fragment.set_data(b"half")
        with pytest.raises(DeleteFailed):
            service.delete(OWNER, fragment.id)
        loaded = service.by_id(OWNER, fragment.id)
        with pytest.raises(NotFound):
            loaded.get_data()
