import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError

from acquisitions.models.user import User, UserRole


def _insert(session, **values):
    row = {"name": "Ada", "email": "ada@example.com", "password": "hash"}
    row.update(values)
    columns = ", ".join(row)
    params = ", ".join(f":{name}" for name in row)
    session.execute(text(f"INSERT INTO users ({columns}) VALUES ({params})"), row)
    session.commit()


def test_users_table_columns():
    columns = {c.name: c for c in User.__table__.columns}
    assert list(columns) == [
        "id", "name", "email", "password", "role", "created_at", "updated_at"
    ]
    assert columns["id"].primary_key
    assert columns["name"].type.length == 256
    assert columns["email"].type.length == 256
    assert columns["email"].unique
    assert not any(c.nullable for name, c in columns.items() if name != "id")


def test_defaults_are_applied_by_storage(session_local):
    session = session_local()
    _insert(session)
    user = session.query(User).one()
    assert user.id == 1
    assert user.role is UserRole.USER
    assert user.created_at is not None
    assert user.updated_at is not None
    session.close()


def test_orm_insert_defaults_role(session_local):
    session = session_local()
    user = User(name="Grace", email="grace@example.com", password="hash")
    session.add(user)
    session.commit()
    session.refresh(user)
    assert user.role == "user"
    assert "hash" not in repr(user)
    session.close()


def test_duplicate_email_is_rejected(session_local):
    session = session_local()
    _insert(session)
    with pytest.raises(IntegrityError):
        _insert(session, name="Someone else")
    session.close()


@pytest.mark.parametrize("role", ["superuser", "Admin", ""])
def test_unknown_role_is_rejected(session_local, role):
    session = session_local()
    with pytest.raises(IntegrityError):
        _insert(session, role=role)
    session.close()


def test_admin_role_is_accepted(session_local):
    session = session_local()
    _insert(session, role="admin")
    assert session.query(User).one().role is UserRole.ADMIN
    session.close()


def test_missing_required_column_is_rejected(session_local):
    session = session_local()
    with pytest.raises(IntegrityError):
        session.execute(
            text("INSERT INTO users (name, email) VALUES ('Ada', 'ada@example.com')")
        )
    session.close()


def test_table_is_provisioned(session_local):
    engine = session_local.kw["bind"]
    assert "users" in inspect(engine).get_table_names()
