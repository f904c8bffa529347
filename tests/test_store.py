"""Tests for the SQLite binding store."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from l2h.core.exceptions import (
    ConflictError,
    DuplicatePath,
    InvalidPath,
    NotFoundError,
    StorageError,
    ValidationError,
)
from l2h.security.credentials import is_hashed
from l2h.storage.store import MAX_API_KEY_DAYS, AdminSettings, BindingStore, is_reserved_path


def _settings(admin_path: str = "console", password: str = "admin-pw") -> AdminSettings:
    return AdminSettings(admin_path=admin_path, username="root", password=password)


class TestInitialize:
    """Schema creation and connection handling."""

    def test_initialize_is_idempotent(self, store: BindingStore) -> None:
        store.initialize()
        store.initialize()
        assert store.list_bindings() == []

    def test_creates_parent_directory(self, tmp_path, codec) -> None:
        db_path = tmp_path / "nested" / "dir" / "l2h.db"
        store = BindingStore(db_path, codec=codec)
        store.initialize()
        store.close()
        assert db_path.exists()

    def test_in_memory_database(self, codec) -> None:
        store = BindingStore(":memory:", codec=codec)
        store.initialize()
        store.add_binding("shop", None, 9001)
        assert [b.path for b in store.list_bindings()] == ["shop"]
        store.close()

    def test_data_survives_reopen(self, tmp_path, codec) -> None:
        db_path = tmp_path / "l2h.db"
        first = BindingStore(db_path, codec=codec)
        first.initialize()
        first.add_binding("shop", None, 9001)
        first.close()

        second = BindingStore(db_path, codec=codec)
        second.initialize()
        assert second.find_binding_by_path("shop") is not None
        second.close()

    def test_unopenable_database_raises_storage_error(self, tmp_path, codec) -> None:
        # A directory cannot be opened as a database file.
        store = BindingStore(tmp_path, codec=codec)
        with pytest.raises(StorageError):
            store.initialize()


class TestSettings:
    """Singleton admin settings row."""

    def test_absent_before_init(self, store: BindingStore) -> None:
        assert store.get_settings() is None

    def test_upsert_hashes_password(self, store: BindingStore) -> None:
        saved = store.upsert_settings(_settings())
        loaded = store.get_settings()

        assert loaded is not None
        assert loaded.admin_path == "console"
        assert loaded.username == "root"
        assert is_hashed(loaded.password)
        assert loaded.password == saved.password

    def test_already_hashed_password_is_kept(self, store: BindingStore, codec) -> None:
        digest = codec.hash("pw")
        store.upsert_settings(_settings(password=digest))
        assert store.get_settings().password == digest

    def test_reinitialization_overwrites(self, store: BindingStore) -> None:
        store.upsert_settings(_settings("console"))
        store.upsert_settings(
            AdminSettings(admin_path="panel", username="ops", password="x", email="ops@example.com")
        )

        loaded = store.get_settings()
        assert loaded.admin_path == "panel"
        assert loaded.username == "ops"
        assert loaded.email == "ops@example.com"

    def test_invalid_admin_path(self, store: BindingStore) -> None:
        with pytest.raises(InvalidPath):
            store.upsert_settings(_settings("/console"))

    def test_invalid_email(self, store: BindingStore) -> None:
        with pytest.raises(ValidationError):
            store.upsert_settings(
                AdminSettings(admin_path="console", username="root", password="x", email="nope")
            )

    def test_missing_username(self, store: BindingStore) -> None:
        with pytest.raises(ValidationError):
            store.upsert_settings(AdminSettings(admin_path="console", username="", password="x"))

    @pytest.mark.parametrize("admin_path", ["api", "health", "api/console"])
    def test_reserved_admin_path(self, store: BindingStore, admin_path: str) -> None:
        with pytest.raises(ConflictError, match="reserved"):
            store.upsert_settings(_settings(admin_path))
        assert store.get_settings() is None

    def test_non_string_password(self, store: BindingStore) -> None:
        with pytest.raises(ValidationError):
            store.upsert_settings(AdminSettings(admin_path="console", username="root", password=None))

    def test_admin_path_colliding_with_binding(self, store: BindingStore) -> None:
        store.add_binding("console", None, 9001)
        with pytest.raises(ConflictError):
            store.upsert_settings(_settings("console"))
        assert store.get_settings() is None

    def test_public_view_omits_password(self, store: BindingStore) -> None:
        store.upsert_settings(_settings())
        data = store.get_settings().to_dict()
        assert "password" not in data
        assert data["admin_path"] == "console"


class TestAdminSettingsFromDict:
    """Request bodies for the settings endpoint."""

    def test_valid(self) -> None:
        settings = AdminSettings.from_dict(
            {"admin_path": "console", "username": "root", "password": "s3cret", "email": ""}
        )
        assert settings == AdminSettings("console", "root", "s3cret", None)

    @pytest.mark.parametrize("key", ["admin_path", "username", "password"])
    @pytest.mark.parametrize("value", [None, "", 0, ["root"]])
    def test_required_fields_must_be_non_empty_strings(self, key: str, value) -> None:
        data = {"admin_path": "console", "username": "root", "password": "s3cret", key: value}
        with pytest.raises(ValidationError, match=f"{key} is required"):
            AdminSettings.from_dict(data)

    def test_missing_field(self) -> None:
        with pytest.raises(ValidationError, match="password is required"):
            AdminSettings.from_dict({"admin_path": "console", "username": "root"})

    @pytest.mark.parametrize("email", [123, True, {"a": 1}])
    def test_email_must_be_string(self, email) -> None:
        data = {"admin_path": "console", "username": "root", "password": "s3cret", "email": email}
        with pytest.raises(ValidationError, match="email must be a string"):
            AdminSettings.from_dict(data)


class TestBindings:
    """Binding CRUD and invariants."""

    def test_add_and_find(self, store: BindingStore) -> None:
        binding_id = store.add_binding("shop", None, 9001)
        binding = store.find_binding_by_path("shop")

        assert binding is not None
        assert binding.id == binding_id
        assert binding.target == 9001
        assert binding.password is None
        assert not binding.has_password

    def test_get_binding_by_id(self, store: BindingStore) -> None:
        binding_id = store.add_binding("shop", None, 9001)
        assert store.get_binding(binding_id).path == "shop"
        assert store.get_binding(binding_id + 100) is None

    def test_find_missing(self, store: BindingStore) -> None:
        assert store.find_binding_by_path("nothing") is None

    def test_password_is_hashed(self, store: BindingStore) -> None:
        store.add_binding("vip", "secret", 9002)
        binding = store.find_binding_by_path("vip")
        assert is_hashed(binding.password)
        assert binding.stored_password.matches("secret")

    def test_empty_password_means_none(self, store: BindingStore) -> None:
        store.add_binding("open", "", 9003)
        assert store.find_binding_by_path("open").password is None

    def test_duplicate_path(self, store: BindingStore) -> None:
        store.add_binding("shop", None, 9001)
        with pytest.raises(DuplicatePath) as exc_info:
            store.add_binding("shop", "pw", 9002)

        assert isinstance(exc_info.value, ConflictError)
        assert exc_info.value.status == 409
        assert [b.path for b in store.list_bindings()] == ["shop"]

    @pytest.mark.parametrize("path", ["", "/shop", "shop/", "a b", "a?b"])
    def test_invalid_path(self, store: BindingStore, path: str) -> None:
        with pytest.raises(InvalidPath):
            store.add_binding(path, None, 9001)

    @pytest.mark.parametrize("target", [0, 65536, "9001", None])
    def test_invalid_target(self, store: BindingStore, target) -> None:
        with pytest.raises(ValidationError):
            store.add_binding("shop", None, target)

    def test_admin_path_is_reserved(self, store: BindingStore) -> None:
        store.upsert_settings(_settings("console"))
        with pytest.raises(DuplicatePath):
            store.add_binding("console", None, 9001)
        with pytest.raises(DuplicatePath):
            store.add_binding("console/app", None, 9001)

    @pytest.mark.parametrize("path", ["api", "api/x", "health", "health/live"])
    def test_fixed_route_paths_are_reserved(self, store: BindingStore, path: str) -> None:
        with pytest.raises(DuplicatePath, match="reserved"):
            store.add_binding(path, None, 9001)
        assert store.list_bindings() == []

    def test_reserved_prefix_needs_segment_boundary(self, store: BindingStore) -> None:
        store.add_binding("apiary", None, 9001)
        store.add_binding("healthy/app", None, 9002)
        assert {b.path for b in store.list_bindings()} == {"apiary", "healthy/app"}
        assert is_reserved_path("api/paths")
        assert not is_reserved_path("apiary")

    def test_list_newest_first(self, store: BindingStore, clock) -> None:
        store.add_binding("first", None, 9001)
        clock.advance(10)
        store.add_binding("second", None, 9002)
        clock.advance(10)
        store.add_binding("third", None, 9003)

        assert [b.path for b in store.list_bindings()] == ["third", "second", "first"]

    def test_list_same_timestamp_orders_by_id(self, store: BindingStore) -> None:
        store.add_binding("a", None, 9001)
        store.add_binding("b", None, 9002)
        assert [b.path for b in store.list_bindings()] == ["b", "a"]

    def test_delete(self, store: BindingStore) -> None:
        binding_id = store.add_binding("shop", None, 9001)
        store.delete_binding(binding_id)
        assert store.find_binding_by_path("shop") is None

    def test_delete_twice_raises_not_found(self, store: BindingStore) -> None:
        binding_id = store.add_binding("shop", None, 9001)
        store.delete_binding(binding_id)
        with pytest.raises(NotFoundError):
            store.delete_binding(binding_id)

    def test_path_reusable_after_delete(self, store: BindingStore) -> None:
        binding_id = store.add_binding("shop", None, 9001)
        store.delete_binding(binding_id)
        store.add_binding("shop", None, 9002)
        assert store.find_binding_by_path("shop").target == 9002

    def test_rotate_password(self, store: BindingStore, codec) -> None:
        binding_id = store.add_binding("vip", "old", 9002)
        new_digest = codec.hash("new")
        store.rotate_binding_password(binding_id, new_digest)
        assert store.get_binding(binding_id).password == new_digest

    def test_rotate_missing_binding(self, store: BindingStore) -> None:
        with pytest.raises(NotFoundError):
            store.rotate_binding_password(42, "x")

    def test_to_dict_hides_digest(self, store: BindingStore) -> None:
        store.add_binding("vip", "secret", 9002)
        data = store.find_binding_by_path("vip").to_dict()
        assert data["has_password"] is True
        assert "password" not in data
        assert data["target"] == 9002


class TestAPIKeys:
    """API key lifecycle and validation side effects."""

    def test_generate(self, store: BindingStore) -> None:
        key = store.generate_api_key("back-node", 0)
        assert len(key) == 32

        keys = store.list_api_keys()
        assert len(keys) == 1
        assert keys[0].key == key
        assert keys[0].name == "back-node"
        assert keys[0].expires_at is None
        assert keys[0].usage_count == 0

    def test_negative_expiry_rejected(self, store: BindingStore) -> None:
        with pytest.raises(ValidationError):
            store.generate_api_key("bad", -1)

    def test_expiry_upper_bound(self, store: BindingStore) -> None:
        with pytest.raises(ValidationError, match="at most"):
            store.generate_api_key("bad", MAX_API_KEY_DAYS + 1)
        assert store.list_api_keys() == []

        store.generate_api_key("long", MAX_API_KEY_DAYS)
        assert store.list_api_keys()[0].expires_at is not None

    def test_unknown_key_invalid(self, store: BindingStore) -> None:
        assert store.validate_api_key("nope") is False
        assert store.validate_api_key("") is False

    def test_validation_records_usage(self, store: BindingStore, clock) -> None:
        key = store.generate_api_key("back-node", 0)

        assert store.validate_api_key(key) is True
        clock.advance(60)
        assert store.validate_api_key(key) is True

        api_key = store.get_api_key(key)
        assert api_key.usage_count == 2
        assert api_key.last_used_at == clock.now()

    def test_key_without_expiry_stays_valid(self, store: BindingStore, clock) -> None:
        key = store.generate_api_key("forever", 0)
        clock.advance(10 * 365 * 86400)
        assert store.validate_api_key(key) is True

    def test_expired_key_invalid(self, store: BindingStore, clock) -> None:
        key = store.generate_api_key("short", 1)
        assert store.validate_api_key(key) is True

        clock.advance(86400 + 1)
        assert store.validate_api_key(key) is False
        # Expired keys are not counted.
        assert store.get_api_key(key).usage_count == 1

    def test_usage_update_failure_keeps_key_valid(self, store: BindingStore) -> None:
        key = store.generate_api_key("back-node", 0)
        original_cursor = store.cursor
        calls = []

        def flaky_cursor():
            calls.append(1)
            if len(calls) == 2:
                raise StorageError("disk I/O error")
            return original_cursor()

        with patch.object(store, "cursor", side_effect=flaky_cursor):
            assert store.validate_api_key(key) is True

        assert len(calls) == 2
        assert store.get_api_key(key).usage_count == 0

    def test_delete(self, store: BindingStore) -> None:
        key = store.generate_api_key("back-node", 0)
        key_id = store.list_api_keys()[0].id
        store.delete_api_key(key_id)

        assert store.list_api_keys() == []
        assert store.validate_api_key(key) is False

    def test_delete_missing(self, store: BindingStore) -> None:
        with pytest.raises(NotFoundError):
            store.delete_api_key(99)

    def test_list_newest_first(self, store: BindingStore, clock) -> None:
        store.generate_api_key("old", 0)
        clock.advance(5)
        store.generate_api_key("new", 0)
        assert [k.name for k in store.list_api_keys()] == ["new", "old"]


class TestServerLink:
    """Back node link to its front node."""

    def test_absent_by_default(self, store: BindingStore) -> None:
        assert store.get_server_link() is None

    def test_set_and_replace(self, store: BindingStore) -> None:
        store.set_server_link("https://front.example/", "key-1")
        store.set_server_link("https://other.example", "key-2")

        link = store.get_server_link()
        assert link.server_url == "https://other.example"
        assert link.api_key == "key-2"

    def test_trailing_slash_stripped(self, store: BindingStore) -> None:
        store.set_server_link("https://front.example/", "key")
        assert store.get_server_link().server_url == "https://front.example"

    def test_requires_values(self, store: BindingStore) -> None:
        with pytest.raises(ValidationError):
            store.set_server_link("", "key")
