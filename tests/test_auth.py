"""Tests des routes /auth : inscription par foyer, connexion, réinitialisation."""
import pytest
from sqlalchemy import insert

from quartier.auth.api import reset_codes
from quartier.auth.models import User
from quartier.auth.services import SIGNED_OUT, auth_provider

DEFAULT_PASSWORD = "secret123"


def _register_payload(community_id=None, **overrides):
    payload = {
        "mode": "CREATE",
        "email": "awa@monquartier.ci",
        "password": "secret123",
        "password_confirm": "secret123",
        "full_name": "Awa Koné",
        "phone": "+2250700000001",
        "community_id": community_id,
    }
    payload.update(overrides)
    return payload


class TestRegister:
    async def test_create_household(self, client, community, backend):
        response = await client.post("/auth/register", json=_register_payload(community["id"]))

        assert response.status_code == 201
        data = response.json()
        assert data["family_code"].startswith("FAM-")
        assert len(data["family_code"]) == 10
        assert data["access_token"]
        assert data["user"]["is_head_of_family"] is True
        assert data["user"]["community_id"] == community["id"]
        assert data["user"]["role"] == "RESIDENT"

        profiles = await backend.rows.query("profiles", filters={"user_id": str(data["user"]["id"])})
        assert profiles[0]["name"] == "Awa Koné"
        assert profiles[0]["family_id"] == data["family_code"]

    async def test_join_household_inherits_community(self, client, community):
        created = (await client.post("/auth/register", json=_register_payload(community["id"]))).json()

        response = await client.post("/auth/register", json=_register_payload(
            mode="JOIN",
            email="ibrahim@monquartier.ci",
            phone="+2250700000002",
            full_name="Ibrahim Koné",
            family_code=created["family_code"],
        ))

        assert response.status_code == 201
        user = response.json()["user"]
        assert user["family_id"] == created["family_code"]
        assert user["community_id"] == community["id"]
        assert user["is_head_of_family"] is False

    async def test_join_with_unknown_code(self, client):
        response = await client.post("/auth/register", json=_register_payload(mode="JOIN", family_code="FAM-ZZZZZZ"))
        assert response.status_code == 404
        assert response.json()["detail"] == "Aucun foyer trouvé avec ce code."

    async def test_create_in_unknown_community(self, client):
        response = await client.post("/auth/register", json=_register_payload("inconnu"))
        assert response.status_code == 404

    async def test_duplicate_email(self, client, community):
        await client.post("/auth/register", json=_register_payload(community["id"]))
        response = await client.post("/auth/register", json=_register_payload(community["id"], phone="+2250799999999"))

        assert response.status_code == 400
        assert response.json()["detail"] == "Conflit de données (Email/Tél déjà utilisé)."

    async def test_simultaneous_registration_is_a_conflict(self, client, db_session, community, monkeypatch):
        real_commit = db_session.commit

        async def commit_after_rival():
            # un autre habitant s'inscrit avec le même email entre la vérification et l'enregistrement
            monkeypatch.setattr(db_session, "commit", real_commit)
            await db_session.execute(insert(User).values(
                email="awa@monquartier.ci", hashed_password="x", full_name="Awa K.",
            ))
            await real_commit()

        monkeypatch.setattr(db_session, "commit", commit_after_rival)
        response = await client.post("/auth/register", json=_register_payload(community["id"]))

        assert response.status_code == 400
        assert response.json()["detail"] == "Conflit de données (Email/Tél déjà utilisé)."

    @pytest.mark.parametrize("overrides", [
        {"password_confirm": "autre-chose"},
        {"password": "123", "password_confirm": "123"},
        {"full_name": "   "},
        {"community_id": None},
        {"email": "pas-un-email"},
    ])
    async def test_validation_happens_before_any_write(self, client, community, backend, overrides):
        payload = _register_payload(community["id"])
        payload.update(overrides)

        response = await client.post("/auth/register", json=payload)

        assert response.status_code == 422
        assert await backend.rows.query("profiles") == []

    async def test_verify_family_code(self, client, make_user, community):
        await make_user(community_id=community["id"], full_name="Awa Koné",
                        family_id="FAM-ABC234", is_head_of_family=True)

        response = await client.post("/auth/verify-family-code", json={"code": " fam-abc234 "})

        assert response.status_code == 200
        assert response.json() == {"head_name": "Awa Koné", "community_id": community["id"]}


class TestLogin:
    async def test_login_with_email(self, client, resident):
        response = await client.post("/auth/login", json={"identifier": resident.email, "password": DEFAULT_PASSWORD})

        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["user"]["email"] == resident.email

    async def test_login_with_phone(self, client, make_user, community, db_session):
        user = await make_user(community_id=community["id"])
        user.phone = "+2250700000042"
        await db_session.commit()

        response = await client.post("/auth/login", json={"identifier": "+2250700000042", "password": DEFAULT_PASSWORD})

        assert response.status_code == 200

    async def test_wrong_password_is_translated(self, client, resident):
        response = await client.post("/auth/login", json={"identifier": resident.email, "password": "mauvais"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Email ou mot de passe incorrect."

    async def test_banned_user_cannot_login(self, client, make_user, community):
        banned = await make_user(community_id=community["id"], status="BANNED")

        response = await client.post("/auth/login", json={"identifier": banned.email, "password": DEFAULT_PASSWORD})

        assert response.status_code == 401
        assert "suspendu" in response.json()["detail"]

    async def test_logout_revokes_token_and_notifies(self, client, auth_headers):
        events = []
        unsubscribe = auth_provider.on_session_change(lambda event, session: events.append(event))
        try:
            response = await client.post("/auth/logout", headers=auth_headers)
        finally:
            unsubscribe()

        assert response.status_code == 200
        assert events == [SIGNED_OUT]
        assert (await client.get("/auth/me", headers=auth_headers)).status_code == 401

    async def test_me_returns_user_and_profile(self, client, resident, auth_headers):
        response = await client.get("/auth/me", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["user"]["id"] == resident.id
        assert data["profile"]["user_id"] == str(resident.id)

    async def test_me_without_token(self, client):
        assert (await client.get("/auth/me")).status_code == 401


class TestPasswordReset:
    async def test_full_reset_flow(self, client, resident):
        response = await client.post("/auth/forgot-password", json={"identifier": resident.email})
        assert response.status_code == 200
        code = reset_codes[resident.email]["code"]

        assert (await client.post("/auth/verify-code", json={"code": code})).status_code == 200
        response = await client.post("/auth/reset-password", json={
            "code": code, "new_password": "nouveau1", "confirm_password": "nouveau1",
        })
        assert response.status_code == 200
        assert resident.email not in reset_codes

        login = await client.post("/auth/login", json={"identifier": resident.email, "password": "nouveau1"})
        assert login.status_code == 200

    async def test_reset_requires_verified_code(self, client, resident):
        await client.post("/auth/forgot-password", json={"identifier": resident.email})
        code = reset_codes[resident.email]["code"]

        response = await client.post("/auth/reset-password", json={
            "code": code, "new_password": "nouveau1", "confirm_password": "nouveau1",
        })

        assert response.status_code == 400

    async def test_expired_code(self, client, resident):
        await client.post("/auth/forgot-password", json={"identifier": resident.email})
        reset_codes[resident.email]["expires"] = 0

        response = await client.post("/auth/verify-code", json={"code": reset_codes[resident.email]["code"]})

        assert response.status_code == 400
        assert response.json()["detail"] == "Code expiré"

    async def test_unknown_user(self, client):
        response = await client.post("/auth/forgot-password", json={"identifier": "personne@monquartier.ci"})
        assert response.status_code == 404
