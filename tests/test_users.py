from acquisitions.models.user import User


def _seed(session_local):
    session = session_local()
    session.add_all([
        User(name="Ada", email="ada@example.com", password="secret-a"),
        User(name="Grace", email="grace@example.com", password="secret-g", role="admin"),
    ])
    session.commit()
    session.close()


def test_list_users(session_local, client):
    _seed(session_local)
    response = client.get("/api/users/")
    assert response.status_code == 200
    data = response.json()
    assert [u["email"] for u in data] == ["ada@example.com", "grace@example.com"]
    assert [u["role"] for u in data] == ["user", "admin"]
    assert all("password" not in u for u in data)


def test_bare_prefix_reaches_collection(session_local, client):
    _seed(session_local)
    response = client.get("/api/users", follow_redirects=False)
    assert response.status_code == 200
    assert len(response.json()) == 2


def test_get_user(session_local, client):
    _seed(session_local)
    response = client.get("/api/users/2")
    assert response.status_code == 200
    assert response.json()["name"] == "Grace"


def test_missing_user_is_collection_404(session_local, client):
    response = client.get("/api/users/999")
    assert response.status_code == 404
    assert response.json() == {"detail": "User not found"}


def test_invalid_user_id(session_local, client):
    response = client.get("/api/users/abc")
    assert response.status_code == 422
