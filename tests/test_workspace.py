from conftest import auth_headers
from database import Bill, Category, Transaction


def category_id(db, user, name="Rent"):
    return (
        db.query(Category.id)
        .filter(Category.workspace_id == user.workspace_id, Category.name == name)
        .scalar()
    )


def create_transaction(client, user, **fields):
    payload = {
        "description": "Coffee beans",
        "amount": 18.5,
        "date": "2024-03-01T10:00:00",
        "type": "EXPENSE",
    }
    payload.update(fields)
    return client.post("/transactions", json=payload, headers=auth_headers(user))


# Categories


def test_duplicate_category_name(client, make_user):
    alice = make_user("Alice")
    headers = auth_headers(alice)

    first = client.post("/categories", json={"name": "Marketing", "color": "#FF0000"}, headers=headers)
    assert first.status_code == 201
    assert first.json()["color"] == "#FF0000"

    second = client.post("/categories", json={"name": "Marketing"}, headers=headers)
    assert second.status_code == 409

    names = [c["name"] for c in client.get("/categories", headers=headers).json()]
    assert names.count("Marketing") == 1


def test_same_category_name_in_other_workspace(client, make_user):
    alice = make_user("Alice")
    bob = make_user("Bob")
    client.post("/categories", json={"name": "Marketing"}, headers=auth_headers(alice))
    response = client.post("/categories", json={"name": "Marketing"}, headers=auth_headers(bob))
    assert response.status_code == 201


def test_category_color_must_be_hex(client, make_user):
    alice = make_user("Alice")
    response = client.post(
        "/categories", json={"name": "Travel", "color": "blue"}, headers=auth_headers(alice)
    )
    assert response.status_code == 400
    assert "body.color" in response.json()["details"]


def test_rename_category(client, make_user, db):
    alice = make_user("Alice")
    headers = auth_headers(alice)
    rent = category_id(db, alice)

    response = client.put(f"/categories/{rent}", json={"name": "Utilities"}, headers=headers)
    assert response.status_code == 409

    response = client.put(f"/categories/{rent}", json={"name": "Rent", "color": "#00FF00"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["color"] == "#00FF00"


def test_category_of_other_workspace(client, make_user, db):
    alice = make_user("Alice")
    bob = make_user("Bob")
    rent = category_id(db, alice)
    headers = auth_headers(bob)

    assert client.put(f"/categories/{rent}", json={"name": "Mine"}, headers=headers).status_code == 404
    assert client.delete(f"/categories/{rent}", headers=headers).status_code == 404
    assert create_transaction(client, bob, categoryId=rent).status_code == 400


def test_delete_category_uncategorises_references(client, make_user, db):
    alice = make_user("Alice")
    headers = auth_headers(alice)
    rent = category_id(db, alice)
    bill = client.post(
        "/bills",
        json={"name": "Flat", "amount": 900, "dueDate": "2024-06-01T00:00:00", "categoryId": rent},
        headers=headers,
    ).json()
    transaction = create_transaction(client, alice, categoryId=rent).json()
    assert transaction["category"]["name"] == "Rent"

    assert client.delete(f"/categories/{rent}", headers=headers).status_code == 200

    db.expire_all()
    assert db.get(Category, rent) is None
    assert db.get(Bill, bill["id"]).category_id is None
    assert db.get(Transaction, transaction["id"]).category_id is None


# Transactions


def test_transactions_are_listed_newest_first(client, make_user):
    alice = make_user("Alice")
    create_transaction(client, alice, description="Old", date="2024-01-01T00:00:00")
    create_transaction(client, alice, description="New", date="2024-02-01T00:00:00")

    body = client.get("/transactions", headers=auth_headers(alice)).json()
    assert [t["description"] for t in body["transactions"]] == ["New", "Old"]
    assert body["transactions"][0]["currency"] == "USD"
    assert body["transactions"][0]["approvalStatus"] == "PENDING"
    assert body["pagination"]["total"] == 2


def test_transaction_of_other_workspace(client, make_user, db):
    alice = make_user("Alice")
    bob = make_user("Bob")
    transaction = create_transaction(client, alice).json()
    headers = auth_headers(bob)

    assert client.get(f"/transactions/{transaction['id']}", headers=headers).status_code == 404
    assert client.put(
        f"/transactions/{transaction['id']}", json={"amount": 1}, headers=headers
    ).status_code == 404
    assert client.delete(f"/transactions/{transaction['id']}", headers=headers).status_code == 404
    assert client.get("/transactions", headers=headers).json()["transactions"] == []

    db.expire_all()
    assert db.get(Transaction, transaction["id"]).amount == 18.5


def test_update_transaction(client, make_user, db):
    alice = make_user("Alice")
    headers = auth_headers(alice)
    transaction = create_transaction(client, alice, categoryId=category_id(db, alice)).json()

    response = client.put(
        f"/transactions/{transaction['id']}",
        json={"amount": 20, "categoryId": None, "description": None},
        headers=headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["amount"] == 20
    assert body["categoryId"] is None
    assert body["description"] == "Coffee beans"


def test_transaction_approval_requires_manager_role(client, make_user):
    alice = make_user("Alice")
    member = make_user("Mia", workspace_id=alice.workspace_id, role="MEMBER")
    transaction = create_transaction(client, member).json()
    url = f"/transactions/{transaction['id']}"

    response = client.patch(url, json={"approvalStatus": "APPROVED"}, headers=auth_headers(member))
    assert response.status_code == 403

    response = client.patch(url, json={"approvalStatus": "APPROVED"}, headers=auth_headers(alice))
    assert response.status_code == 200
    body = response.json()
    assert body["approvalStatus"] == "APPROVED"
    assert body["approvedById"] == alice.id
    assert body["approvedAt"] is not None


def test_transaction_approval_status_values(client, make_user):
    alice = make_user("Alice")
    transaction = create_transaction(client, alice).json()
    response = client.patch(
        f"/transactions/{transaction['id']}",
        json={"approvalStatus": "PENDING"},
        headers=auth_headers(alice),
    )
    assert response.status_code == 400


def test_user_without_workspace(client, make_user, db):
    loner = make_user("Lee")
    loner.workspace_id = None
    db.commit()

    response = client.get("/transactions", headers=auth_headers(loner))
    assert response.status_code == 401


# Assets


def test_asset_crud(client, make_user):
    alice = make_user("Alice")
    bob = make_user("Bob")
    headers = auth_headers(alice)

    asset = client.post(
        "/assets",
        json={"name": "Laptop", "purchaseDate": "2023-09-01T00:00:00", "initialValue": 1500},
        headers=headers,
    )
    assert asset.status_code == 201
    asset_id = asset.json()["id"]

    response = client.put(f"/assets/{asset_id}", json={"initialValue": 1200}, headers=headers)
    assert response.json()["initialValue"] == 1200

    assert client.get(f"/assets/{asset_id}", headers=auth_headers(bob)).status_code == 404
    assert client.get("/assets", headers=auth_headers(bob)).json() == []
    assert [a["name"] for a in client.get("/assets", headers=headers).json()] == ["Laptop"]

    assert client.delete(f"/assets/{asset_id}", headers=headers).status_code == 200
    assert client.get(f"/assets/{asset_id}", headers=headers).status_code == 404


def test_asset_value_must_be_positive(client, make_user):
    alice = make_user("Alice")
    response = client.post(
        "/assets",
        json={"name": "Laptop", "purchaseDate": "2023-09-01T00:00:00", "initialValue": -1},
        headers=auth_headers(alice),
    )
    assert response.status_code == 400


# Scheduled payments


def test_scheduled_payments_are_paged_by_ten(client, make_user):
    alice = make_user("Alice")
    headers = auth_headers(alice)
    for day in range(12, 0, -1):
        client.post(
            "/scheduled-payments",
            json={
                "description": f"Payment {day}",
                "amount": 10,
                "currency": "EUR",
                "dueDate": f"2024-05-{day:02d}T00:00:00",
            },
            headers=headers,
        )

    first = client.get("/scheduled-payments", headers=headers).json()
    assert len(first["scheduledPayments"]) == 10
    assert first["scheduledPayments"][0]["description"] == "Payment 1"
    assert first["pagination"] == {"total": 12, "page": 1, "limit": 10, "pages": 2}

    second = client.get("/scheduled-payments", params={"page": 2}, headers=headers).json()
    assert [p["description"] for p in second["scheduledPayments"]] == ["Payment 11", "Payment 12"]


def test_scheduled_payment_update_and_isolation(client, make_user):
    alice = make_user("Alice")
    bob = make_user("Bob")
    headers = auth_headers(alice)
    payment = client.post(
        "/scheduled-payments",
        json={
            "description": "Insurance",
            "amount": 300,
            "currency": "USD",
            "dueDate": "2024-07-01T00:00:00",
            "isRecurring": True,
            "frequency": "YEARLY",
        },
        headers=headers,
    ).json()
    url = f"/scheduled-payments/{payment['id']}"

    response = client.put(url, json={"isRecurring": False, "frequency": None}, headers=headers)
    assert response.status_code == 200
    assert response.json()["isRecurring"] is False
    assert response.json()["frequency"] is None

    assert client.get(url, headers=auth_headers(bob)).status_code == 404
    assert client.delete(url, headers=auth_headers(bob)).status_code == 404
    assert client.delete(url, headers=headers).status_code == 200
