import pytest

from conftest import auth_headers
from database import Notification


@pytest.fixture
def notify(db):
    def _notify(user, message="Bill due", read=False):
        notification = Notification(user_id=user.id, type="PAYMENT_DUE", message=message, read=read)
        db.add(notification)
        db.commit()
        db.refresh(notification)
        return notification

    return _notify


def read_flags(db, ids):
    db.expire_all()
    return {n.id: n.read for n in db.query(Notification).filter(Notification.id.in_(ids))}


def test_list_notifications(client, make_user, notify):
    alice = make_user("Alice")
    bob = make_user("Bob")
    notify(alice, "one")
    notify(alice, "two", read=True)
    notify(bob, "other")

    body = client.get("/notifications", headers=auth_headers(alice)).json()
    assert {n["message"] for n in body["notifications"]} == {"one", "two"}
    assert body["unreadCount"] == 1
    assert body["pagination"]["total"] == 2

    unread = client.get("/notifications", params={"read": "false"}, headers=auth_headers(alice)).json()
    assert [n["message"] for n in unread["notifications"]] == ["one"]


def test_bulk_update_with_foreign_id_changes_nothing(client, make_user, notify, db):
    alice = make_user("Alice")
    bob = make_user("Bob")
    mine = notify(alice)
    theirs = notify(bob)

    response = client.patch(
        "/notifications", json={"ids": [mine.id, theirs.id], "read": True}, headers=auth_headers(alice)
    )
    assert response.status_code == 403
    assert read_flags(db, [mine.id, theirs.id]) == {mine.id: False, theirs.id: False}


def test_bulk_update_own_notifications(client, make_user, notify, db):
    alice = make_user("Alice")
    first = notify(alice)
    second = notify(alice)
    headers = auth_headers(alice)

    response = client.patch("/notifications", json={"ids": [first.id]}, headers=headers)
    assert response.status_code == 200
    assert read_flags(db, [first.id, second.id]) == {first.id: True, second.id: False}

    client.patch("/notifications", json={"ids": [first.id], "read": False}, headers=headers)
    assert read_flags(db, [first.id]) == {first.id: False}


def test_mark_all_as_read(client, make_user, notify, db):
    alice = make_user("Alice")
    bob = make_user("Bob")
    mine = [notify(alice), notify(alice)]
    theirs = notify(bob)

    response = client.patch("/notifications", json={"markAllAsRead": True}, headers=auth_headers(alice))
    assert response.status_code == 200

    flags = read_flags(db, [n.id for n in mine] + [theirs.id])
    assert flags == {mine[0].id: True, mine[1].id: True, theirs.id: False}


def test_bulk_update_requires_target(client, make_user):
    alice = make_user("Alice")
    response = client.patch("/notifications", json={"read": True}, headers=auth_headers(alice))
    assert response.status_code == 400


def test_get_notification_marks_it_read(client, make_user, notify, db):
    alice = make_user("Alice")
    bob = make_user("Bob")
    notification = notify(alice)

    assert client.get(f"/notifications/{notification.id}", headers=auth_headers(bob)).status_code == 404

    response = client.get(f"/notifications/{notification.id}", headers=auth_headers(alice))
    assert response.status_code == 200
    assert read_flags(db, [notification.id]) == {notification.id: True}


def test_update_single_notification(client, make_user, notify):
    alice = make_user("Alice")
    bob = make_user("Bob")
    notification = notify(alice)

    response = client.patch(
        f"/notifications/{notification.id}", json={"read": True}, headers=auth_headers(bob)
    )
    assert response.status_code == 404

    response = client.patch(
        f"/notifications/{notification.id}", json={"read": True}, headers=auth_headers(alice)
    )
    assert response.status_code == 200
    assert response.json()["read"] is True


def test_delete_notifications(client, make_user, notify, db):
    alice = make_user("Alice")
    bob = make_user("Bob")
    first, second, third = notify(alice), notify(alice), notify(alice)
    theirs = notify(bob)
    headers = auth_headers(alice)

    response = client.request("DELETE", "/notifications", json={"ids": [theirs.id]}, headers=headers)
    assert response.status_code == 403

    response = client.request("DELETE", "/notifications", json={"ids": [first.id]}, headers=headers)
    assert response.status_code == 200

    assert client.delete(f"/notifications/{second.id}", headers=headers).status_code == 200
    assert client.delete(f"/notifications/{theirs.id}", headers=headers).status_code == 404

    db.expire_all()
    assert {n.id for n in db.query(Notification)} == {third.id, theirs.id}

    assert client.delete("/notifications", params={"all": "true"}, headers=headers).status_code == 200
    db.expire_all()
    assert {n.id for n in db.query(Notification)} == {theirs.id}


def test_delete_notifications_requires_ids(client, make_user):
    alice = make_user("Alice")
    assert client.delete("/notifications", headers=auth_headers(alice)).status_code == 400
