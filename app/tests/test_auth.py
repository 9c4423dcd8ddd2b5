import pytest
from sqlalchemy.future import select

from app.core.enums import AuditAction
from app.models.audit import Audit


class TestLogin:

    @pytest.mark.asyncio
    async def test_login_returns_token(self, test_client, operator_user, session_factory):
        response = await test_client.post("/auth/login", data={"username": "operator", "password": "secret-pass"})

        assert response.status_code == 200
        token = response.json()["access_token"]
        assert response.json()["token_type"] == "bearer"

        listed = await test_client.get("/quotations/", headers={"Authorization": f"Bearer {token}"})
        assert listed.status_code == 200

        async with session_factory() as session:
            audits = (await session.execute(select(Audit))).scalars().all()
        assert [a.endpoint for a in audits] == [str(AuditAction.LOGIN)]

    @pytest.mark.asyncio
    async def test_wrong_password(self, test_client, operator_user):
        response = await test_client.post("/auth/login", data={"username": "operator", "password": "nope-nope"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_garbage_token(self, test_client):
        response = await test_client.get("/quotations/", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401


class TestOperators:

    @pytest.mark.asyncio
    async def test_admin_registers_operator(self, test_client, admin_headers):
        response = await test_client.post(
            "/auth/operators",
            json={"username": "maria", "password": "long-enough", "email": "maria@shop.test"},
            headers=admin_headers,
        )

        assert response.status_code == 201
        assert response.json()["role"] == "operator"

        login = await test_client.post("/auth/login", data={"username": "maria", "password": "long-enough"})
        assert login.status_code == 200

    @pytest.mark.asyncio
    async def test_duplicate_username(self, test_client, admin_headers, operator_user):
        response = await test_client.post(
            "/auth/operators",
            json={"username": "operator", "password": "long-enough"},
            headers=admin_headers,
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_operators_cannot_register_operators(self, test_client, operator_headers):
        response = await test_client.post(
            "/auth/operators",
            json={"username": "maria", "password": "long-enough"},
            headers=operator_headers,
        )

        assert response.status_code == 403
