from conftest import auth_headers
from database import Bill, Notification, TeamMember, User


def test_profile_with_stats(client, make_user, make_team, db):
    alice = make_user("Alice")
    make_team(alice)
    headers = auth_headers(alice)
    client.post("/bills", json={"name": "Rent", "amount": 10, "dueDate": "2024-06-01T00:00:00"}, headers=headers)
    db.add(Notification(user_id=alice.id, type="SYSTEM", message="hi"))
    db.commit()

    body = client.get("/profile", headers=headers).json()
    assert body["email"] == "alice@example.com"
    assert body["notificationSettings"] == {"email": True, "push": False}
    assert body["stats"] == {
        "billsCount": 1,
        "teamsCount": 1,
        "categoriesCount": 4,
        "unreadNotificationsCount": 1,
    }


def test_update_profile(client, make_user):
    alice = make_user("Alice")
    make_user("Bob")
    headers = auth_headers(alice)

    response = client.patch("/profile", json={"email": "bob@example.com"}, headers=headers)
    assert response.status_code == 400

    response = client.patch(
        "/profile",
        json={"name": "Alicia", "phone": "+1 555 0100", "notificationSettings": {"push": True}},
        headers=headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Alicia"
    assert body["phone"] == "+1 555 0100"
    assert body["notificationSettings"] == {"email": True, "push": True}

    response = client.patch("/profile", json={"phone": None}, headers=headers)
    assert response.json()["phone"] is None
    assert response.json()["name"] == "Alicia"


def test_change_password(client, make_user):
    make_user("Alice")
    login = client.post("/auth/login", json={"email": "alice@example.com", "password": "password123"})
    headers = {"Authorization": f"Bearer {login.json()['accessToken']}"}
    url = "/profile/password"

    mismatch = client.post(
        url,
        json={"currentPassword": "password123", "newPassword": "newpassword1", "confirmPassword": "other"},
        headers=headers,
    )
    assert mismatch.status_code == 400

    wrong = client.post(
        url,
        json={"currentPassword": "nope", "newPassword": "newpassword1", "confirmPassword": "newpassword1"},
        headers=headers,
    )
    assert wrong.status_code == 400
    assert wrong.json() == {"error": "Current password is incorrect"}

    ok = client.post(
        url,
        json={"currentPassword": "password123", "newPassword": "newpassword1", "confirmPassword": "newpassword1"},
        headers=headers,
    )
    assert ok.status_code == 200

    relogin = client.post("/auth/login", json={"email": "alice@example.com", "password": "newpassword1"})
    assert relogin.status_code == 200


def test_delete_account_requires_confirmation(client, make_user):
    alice = make_user("Alice")
    response = client.post(
        "/profile/delete",
        json={"password": "password123", "confirmation": "yes"},
        headers=auth_headers(alice),
    )
    assert response.status_code == 400


def test_workspace_owner_cannot_delete_account(client, make_user):
    alice = make_user("Alice")
    response = client.post(
        "/profile/delete",
        json={"password": "password123", "confirmation": "DELETE"},
        headers=auth_headers(alice),
    )
    assert response.status_code == 400


def test_delete_account(client, make_user, make_team, db):
    alice = make_user("Alice")
    mia = make_user("Mia", workspace_id=alice.workspace_id)
    mia_id = mia.id
    team = make_team(alice, (mia, "MEMBER"))
    headers = auth_headers(mia)
    client.post("/bills", json={"name": "Gym", "amount": 30, "dueDate": "2024-06-01T00:00:00"}, headers=headers)
    client.post(
        "/bills",
        json={"name": "Hosting", "amount": 30, "dueDate": "2024-06-01T00:00:00", "teamId": team.id},
        headers=headers,
    )

    wrong = client.post(
        "/profile/delete", json={"password": "bad-password", "confirmation": "DELETE"}, headers=headers
    )
    assert wrong.status_code == 400

    response = client.post(
        "/profile/delete", json={"password": "password123", "confirmation": "DELETE"}, headers=headers
    )
    assert response.status_code == 200

    db.expire_all()
    assert db.get(User, mia_id) is None
    assert db.query(TeamMember).filter(TeamMember.user_id == mia_id).count() == 0
    assert [b.name for b in db.query(Bill)] == ["Hosting"]
    assert db.query(Bill).one().user_id is None
    assert client.get("/profile", headers=headers).status_code == 401
