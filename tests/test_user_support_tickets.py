"""
tests/test_user_support_tickets.py
Tests for an app user's own support tickets.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import SupportTicket, User
from tests.conftest import auth_headers, make_firm, make_ticket, make_user, reload


@pytest.mark.asyncio
async def test_requires_authentication(client: AsyncClient):
    response = await client.get("/support_tickets")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_admin_token_is_rejected(client: AsyncClient, admin_headers: dict):
    response = await client.get("/support_tickets", headers=admin_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_blocked_user_is_rejected(client: AsyncClient, db: AsyncSession):
    blocked = await make_user(db, blocked=True)
    response = await client.get("/support_tickets", headers=auth_headers(blocked))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_only_own_tickets_newest_first(client: AsyncClient, user: User, db: AsyncSession):
    other = await make_user(db)
    older = await make_ticket(db, user)
    newer = await make_ticket(db, user)
    await make_ticket(db, other)

    response = await client.get("/support_tickets", headers=auth_headers(user))
    assert response.status_code == 200
    body = response.json()
    assert [r["id"] for r in body["data"]] == [str(newer.id), str(older.id)]
    assert body["meta"]["totalPages"] == 1


@pytest.mark.asyncio
async def test_create_ticket(client: AsyncClient, user: User, db: AsyncSession):
    firm = await make_firm(db)

    response = await client.post(
        "/support_tickets",
        json={"query": "Wrong opening hours", "firm_id": firm.id, "status": "CLOSED", "checked": True},
        headers=auth_headers(user),
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["attributes"]["query"] == "Wrong opening hours"
    assert data["attributes"]["ticketable_type"] == "User"
    assert data["attributes"]["ticketable_id"] == user.id
    assert data["attributes"]["firm_id"] == firm.id
    assert data["attributes"]["status"] == "OPEN"
    assert data["attributes"]["checked"] is False


@pytest.mark.asyncio
async def test_create_ticket_requires_query(client: AsyncClient, user: User, db: AsyncSession):
    response = await client.post("/support_tickets", json={"query": "  "}, headers=auth_headers(user))
    assert response.status_code == 422
    error = response.json()["errors"][0]
    assert error["status"] == "422"
    assert error["title"] == "Invalid query"
    assert error["detail"] == "Query can't be blank"


@pytest.mark.asyncio
async def test_create_ticket_unknown_firm(client: AsyncClient, user: User):
    response = await client.post(
        "/support_tickets", json={"query": "Help", "firm_id": 424242}, headers=auth_headers(user)
    )
    assert response.status_code == 422
    assert response.json()["errors"][0]["title"] == "Invalid firm"


@pytest.mark.asyncio
async def test_get_own_ticket(client: AsyncClient, user: User, db: AsyncSession):
    ticket = await make_ticket(db, user)
    response = await client.get(f"/support_tickets/{ticket.id}", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["data"]["id"] == str(ticket.id)


@pytest.mark.asyncio
async def test_other_users_ticket_is_404(client: AsyncClient, user: User, db: AsyncSession):
    other = await make_user(db)
    ticket = await make_ticket(db, other)
    headers = auth_headers(user)

    assert (await client.get(f"/support_tickets/{ticket.id}", headers=headers)).status_code == 404
    assert (
        await client.patch(f"/support_tickets/{ticket.id}", json={"query": "hijack"}, headers=headers)
    ).status_code == 404
    assert (await client.delete(f"/support_tickets/{ticket.id}", headers=headers)).status_code == 404
    assert (await reload(db, SupportTicket, ticket.id)).query == "The map pin does not show up"


@pytest.mark.asyncio
async def test_update_own_ticket(client: AsyncClient, user: User, db: AsyncSession):
    ticket = await make_ticket(db, user)

    response = await client.patch(
        f"/support_tickets/{ticket.id}",
        json={"query": "Still broken after the update", "checked": True},
        headers=auth_headers(user),
    )
    assert response.status_code == 200
    attributes = response.json()["data"]["attributes"]
    assert attributes["query"] == "Still broken after the update"
    assert attributes["checked"] is False


@pytest.mark.asyncio
async def test_update_own_ticket_rejects_blank_query(client: AsyncClient, user: User, db: AsyncSession):
    ticket = await make_ticket(db, user)
    response = await client.patch(
        f"/support_tickets/{ticket.id}", json={"query": None}, headers=auth_headers(user)
    )
    assert response.status_code == 422
    assert response.json()["errors"][0]["title"] == "Invalid query"


@pytest.mark.asyncio
async def test_delete_own_ticket(client: AsyncClient, user: User, db: AsyncSession):
    ticket = await make_ticket(db, user)

    response = await client.delete(f"/support_tickets/{ticket.id}", headers=auth_headers(user))
    assert response.status_code == 204
    assert await reload(db, SupportTicket, ticket.id) is None
    listing = (await client.get("/support_tickets", headers=auth_headers(user))).json()
    assert listing["data"] == []
