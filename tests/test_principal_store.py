"""Unit tests for auth/store.py -- PrincipalStore persistence."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import Principal
from auth.store import PrincipalStore
from conftest import add_principal


def test_create_and_read_back(principal_store: PrincipalStore) -> None:
    assert not principal_store.has_users()
    created = add_principal(principal_store, "Ann@Example.com", name="Ann")
    assert principal_store.has_users()
    assert created.id is not None
    assert created.email == "ann@example.com"
    assert created.active is True
    assert created.created_at and created.updated_at
    assert principal_store.get_by_email(" ANN@example.com ").id == created.id


def test_email_is_unique(principal_store: PrincipalStore) -> None:
    add_principal(principal_store, "ann@example.com")
    with pytest.raises(IntegrityError):
        principal_store.create(Principal(name="Dup", email="ANN@example.com"))


def test_missing_lookups_return_none(principal_store: PrincipalStore) -> None:
    assert principal_store.get_by_id(999) is None
    assert principal_store.get_by_email("nobody@example.com") is None
    assert principal_store.get_by_external_id("google-x") is None


def test_link_external_id_only_once(principal_store: PrincipalStore) -> None:
    ann = add_principal(principal_store, "ann@example.com")
    assert principal_store.link_external_id(ann.id, "google-1") is True
    assert principal_store.link_external_id(ann.id, "google-2") is False
    assert principal_store.get_by_external_id("google-1").id == ann.id
    assert principal_store.get_by_id(ann.id).external_id == "google-1"


def test_update_fields(principal_store: PrincipalStore) -> None:
    ann = add_principal(principal_store, "ann@example.com")
    assert principal_store.update(ann.id, name="Ann B", role="admin", active=False, email_verified=False)
    updated = principal_store.get_by_id(ann.id)
    assert (updated.name, updated.role, updated.active, updated.email_verified) == ("Ann B", "admin", False, False)


def test_update_unknown_field_rejected(principal_store: PrincipalStore) -> None:
    ann = add_principal(principal_store, "ann@example.com")
    with pytest.raises(ValueError):
        principal_store.update(ann.id, external_id="google-1")


def test_update_missing_principal(principal_store: PrincipalStore) -> None:
    assert principal_store.update(999, name="x") is False


def test_list_filters_and_admin_count(principal_store: PrincipalStore) -> None:
    add_principal(principal_store, "a@example.com", role="admin")
    add_principal(principal_store, "b@example.com", role="admin", active=False)
    add_principal(principal_store, "c@example.com")

    assert [p.email for p in principal_store.list_principals()] == ["a@example.com", "b@example.com", "c@example.com"]
    assert len(principal_store.list_principals(role="admin")) == 2
    assert [p.email for p in principal_store.list_principals(active=False)] == ["b@example.com"]
    assert principal_store.count_active_admins() == 1


def test_delete(principal_store: PrincipalStore) -> None:
    ann = add_principal(principal_store, "ann@example.com")
    assert principal_store.delete(ann.id) is True
    assert principal_store.get_by_id(ann.id) is None
    assert principal_store.delete(ann.id) is False
