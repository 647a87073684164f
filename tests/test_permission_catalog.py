import pytest

from app.models.permission import Permission
from app.services.exceptions import UnknownPermission
from app.services.permission_catalog import (
    DEFAULT_PERMISSIONS,
    get_permission_catalog,
    list_permissions,
    reset_permission_catalog,
    split_slug,
)


def test_split_slug():
    assert split_slug("medical_records.view") == ("medical_records", "view")
    assert split_slug("users.deactivate") == ("users", "deactivate")


@pytest.mark.parametrize("slug", ["patients", ".view", "patients.", ""])
def test_split_slug_rejects_malformed(slug):
    with pytest.raises(ValueError):
        split_slug(slug)


def test_default_slugs_are_unique():
    slugs = [slug for slug, _, _ in DEFAULT_PERMISSIONS]
    assert len(slugs) == len(set(slugs))


def test_catalog_matches_seeded_rows(db):
    catalog = get_permission_catalog(db)
    assert len(catalog) == len(DEFAULT_PERMISSIONS)
    assert "patients.edit" in catalog
    entry = catalog.get("patients.edit")
    assert entry.module == "patients"
    assert entry.action == "edit"


def test_catalog_is_cached_until_reset(db):
    first = get_permission_catalog(db)
    assert get_permission_catalog(db) is first

    reset_permission_catalog()
    assert get_permission_catalog(db) is not first


def test_empty_catalog_is_not_cached(session_factory):
    reset_permission_catalog()
    empty_db = session_factory()
    try:
        assert len(get_permission_catalog(empty_db)) == 0
        empty_db.add(
            Permission(slug="reports.view", name="View Reports", module="reports", action="view")
        )
        empty_db.commit()
        assert "reports.view" in get_permission_catalog(empty_db)
    finally:
        empty_db.close()
        reset_permission_catalog()


def test_validate_lists_every_unknown_slug(db):
    catalog = get_permission_catalog(db)
    with pytest.raises(UnknownPermission) as exc_info:
        catalog.validate(["patients.view", "no_such.perm", "patients.fly"])
    assert exc_info.value.slugs == ["no_such.perm", "patients.fly"]
    assert exc_info.value.status_code == 400


def test_validate_deduplicates(db):
    entries = get_permission_catalog(db).validate(["patients.view", "patients.view"])
    assert [e.slug for e in entries] == ["patients.view"]


def test_module_actions(db):
    catalog = get_permission_catalog(db)
    assert catalog.module_actions("file_assets") == {"manage", "view", "upload", "download", "delete"}


def test_list_permissions_is_ordered_by_module_then_action(db):
    rows = list_permissions(db)
    keys = [(p.module, p.action) for p in rows]
    assert keys == sorted(keys)
    assert len(rows) == len(DEFAULT_PERMISSIONS)
