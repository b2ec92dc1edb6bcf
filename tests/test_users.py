"""
tests/test_users.py
Tests for admin user moderation: listing, CSV export, profile edits
(uniqueness, change-birthday-once) and soft delete.
"""

import csv
import io
from datetime import date, datetime

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import ActiveStatus, User
from tests.conftest import auth_headers, make_ticket, make_user, reload


@pytest.mark.asyncio
async def test_list_users(client: AsyncClient, admin_headers: dict, db: AsyncSession):
    first = await make_user(db)
    second = await make_user(db)

    response = await client.get("/admin/users", headers=admin_headers)
    assert response.status_code == 200
    body = response.json()
    assert [r["id"] for r in body["data"]] == [str(first.id), str(second.id)]
    assert body["data"][0]["type"] == "users"
    assert body["data"][0]["attributes"]["can_change_birthday"] is True


@pytest.mark.asyncio
async def test_search_users(client: AsyncClient, admin_headers: dict, db: AsyncSession):
    await make_user(db)
    target = await make_user(db, first_name="Marguerite")

    body = (await client.get("/admin/users", params={"search": "margue"}, headers=admin_headers)).json()
    assert [r["id"] for r in body["data"]] == [str(target.id)]


@pytest.mark.asyncio
async def test_export_users_csv(client: AsyncClient, admin_headers: dict, db: AsyncSession):
    user = await make_user(db, first_name="Ada", last_name="Lovelace", phone="555-0100")

    response = await client.get("/admin/users.csv", headers=admin_headers)
    assert response.status_code == 200
    assert response.headers["content-disposition"] == (
        f'attachment; filename="users-{date.today().isoformat()}.csv"'
    )
    rows = list(csv.DictReader(io.StringIO(response.text)))
    assert len(rows) == 1
    assert rows[0]["id"] == str(user.id)
    assert rows[0]["name"] == "Ada Lovelace"
    assert rows[0]["birthday"] == "1990-05-17"
    assert rows[0]["status"] == "ACTIVE"
    assert rows[0]["lat"] == ""


@pytest.mark.asyncio
async def test_get_user_includes_support_tickets(client: AsyncClient, admin_headers: dict, db: AsyncSession):
    user = await make_user(db)
    ticket = await make_ticket(db, user)
    discarded = await make_ticket(db, user, discarded_at=datetime(2024, 1, 1))

    response = await client.get(f"/admin/users/{user.id}", headers=admin_headers)
    assert response.status_code == 200
    relationship = response.json()["data"]["relationships"]["support_tickets"]["data"]
    assert relationship == [{"type": "support_tickets", "id": str(ticket.id)}]
    assert str(discarded.id) not in [r["id"] for r in relationship]


@pytest.mark.asyncio
async def test_get_missing_user(client: AsyncClient, admin_headers: dict):
    response = await client.get("/admin/users/10000", headers=admin_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_user(client: AsyncClient, admin_headers: dict, db: AsyncSession):
    user = await make_user(db)

    response = await client.patch(
        f"/admin/users/{user.id}",
        json={"first_name": "Renamed", "status": "inactive", "blocked": True, "email": "New.Address@Example.com"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    attributes = response.json()["data"]["attributes"]
    assert attributes["first_name"] == "Renamed"
    assert attributes["status"] == "INACTIVE"
    assert attributes["blocked"] is True
    assert attributes["email"] == "new.address@example.com"


@pytest.mark.asyncio
async def test_update_user_duplicate_email(client: AsyncClient, admin_headers: dict, db: AsyncSession):
    taken = await make_user(db)
    user = await make_user(db)

    response = await client.patch(
        f"/admin/users/{user.id}", json={"email": taken.email.upper()}, headers=admin_headers
    )
    assert response.status_code == 200
    error = response.json()["errors"][0]
    assert error["title"] == "Invalid email"
    assert error["detail"] == "Email has already been taken"


@pytest.mark.asyncio
async def test_update_user_username_taken_by_discarded_user(
    client: AsyncClient, admin_headers: dict, db: AsyncSession
):
    await make_user(db, username="ghost", discarded_at=datetime(2024, 1, 1))
    user = await make_user(db)

    response = await client.patch(f"/admin/users/{user.id}", json={"username": "ghost"}, headers=admin_headers)
    assert response.json()["errors"][0]["title"] == "Invalid username"


@pytest.mark.asyncio
async def test_update_user_rejects_bad_username(client: AsyncClient, admin_headers: dict, db: AsyncSession):
    user = await make_user(db)
    response = await client.patch(
        f"/admin/users/{user.id}", json={"username": "has spaces!"}, headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json()["errors"][0]["title"] == "Invalid username"


@pytest.mark.asyncio
async def test_birthday_can_change_once(client: AsyncClient, admin_headers: dict, db: AsyncSession):
    user = await make_user(db)

    first = await client.patch(f"/admin/users/{user.id}", json={"birthday": "1991-02-03"}, headers=admin_headers)
    assert first.status_code == 200
    assert first.json()["data"]["attributes"]["birthday"] == "1991-02-03"
    assert first.json()["data"]["attributes"]["can_change_birthday"] is False

    second = await client.patch(f"/admin/users/{user.id}", json={"birthday": "1992-02-03"}, headers=admin_headers)
    assert second.json()["errors"][0]["detail"] == "Birthday can only be changed once"
    assert (await reload(db, User, user.id)).birthday == date(1991, 2, 3)


@pytest.mark.asyncio
async def test_same_birthday_does_not_use_up_the_change(
    client: AsyncClient, admin_headers: dict, db: AsyncSession
):
    user = await make_user(db)
    response = await client.patch(f"/admin/users/{user.id}", json={"birthday": "1990-05-17"}, headers=admin_headers)
    assert response.json()["data"]["attributes"]["can_change_birthday"] is True


@pytest.mark.asyncio
async def test_delete_user(client: AsyncClient, admin_headers: dict, db: AsyncSession):
    user = await make_user(db)

    response = await client.delete(f"/admin/users/{user.id}", headers=admin_headers)
    assert response.status_code == 204
    assert await reload(db, User, user.id) is None
    assert (await client.get(f"/admin/users/{user.id}", headers=admin_headers)).status_code == 404


@pytest.mark.asyncio
async def test_deleted_user_token_is_rejected(client: AsyncClient, admin_headers: dict, db: AsyncSession):
    user = await make_user(db)
    await client.delete(f"/admin/users/{user.id}", headers=admin_headers)
    response = await client.get("/support_tickets", headers=auth_headers(user))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_search_users_by_status(client: AsyncClient, admin_headers: dict, db: AsyncSession):
    await make_user(db, status=ActiveStatus.INACTIVE)
    body = (await client.get("/admin/users", params={"search": "inactive"}, headers=admin_headers)).json()
    assert len(body["data"]) == 1
