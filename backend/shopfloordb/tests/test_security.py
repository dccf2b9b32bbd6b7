from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi import HTTPException

from shopfloordb import security
from shopfloordb.apps.accounts import models as account_models


def _create_user(db, *, role=account_models.AccountRole.OPERATOR, is_active=True) -> account_models.User:
    user = account_models.User(
        staff_code=f"{role.value}-1",
        email=f"{role.value.lower()}@example.com",
        full_name=f"{role.value.title()} One",
        role=role,
        maintenance_skill_level=2,
        is_active=is_active,
        is_available=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def test_token_round_trip_resolves_user(db_session):
    user = _create_user(db_session)
    token = security.create_access_token(data={"sub": str(user.id)})

    resolved = security.get_current_user(token=token, db=db_session)

    assert resolved.id == user.id


def test_expired_or_foreign_tokens_are_rejected(db_session):
    user = _create_user(db_session)
    expired = security.create_access_token(data={"sub": str(user.id)}, expires_delta=timedelta(minutes=-5))

    with pytest.raises(HTTPException) as exc:
        security.get_current_user(token=expired, db=db_session)
    assert exc.value.status_code == 401

    with pytest.raises(HTTPException):
        security.get_current_user(token="not-a-jwt", db=db_session)

    unknown = security.create_access_token(data={"sub": "9999"})
    with pytest.raises(HTTPException):
        security.get_current_user(token=unknown, db=db_session)


def test_inactive_user_is_refused(db_session):
    user = _create_user(db_session, is_active=False)

    with pytest.raises(HTTPException) as exc:
        security.get_current_active_user(current_user=user)
    assert exc.value.status_code == 400


def test_require_roles_allows_listed_roles_and_admin(db_session):
    dependency = security.require_roles(account_models.AccountRole.SHIFT_LEAD)
    lead = _create_user(db_session, role=account_models.AccountRole.SHIFT_LEAD)
    admin = _create_user(db_session, role=account_models.AccountRole.ADMIN)
    operator = _create_user(db_session, role=account_models.AccountRole.OPERATOR)

    assert dependency(current_user=lead) is lead
    assert dependency(current_user=admin) is admin
    with pytest.raises(HTTPException) as exc:
        dependency(current_user=operator)
    assert exc.value.status_code == 403


def test_require_roles_rejects_unknown_role_names():
    with pytest.raises(ValueError):
        security.require_roles("PLANT_MANAGER")
