"""Tests des petites annonces."""
import json

import pytest_asyncio

PNG = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR"


def _form(**fields):
    ad = {"type": "SELL", "title": "Vélo enfant", "description": "Bon état, roues 16 pouces", "price": 15000}
    ad.update(fields)
    return {"classified_data": json.dumps(ad)}


@pytest_asyncio.fixture
async def classified(client, auth_headers):
    response = await client.post("/marketplace/classifieds", headers=auth_headers, data=_form())
    assert response.status_code == 201
    return response.json()


class TestPublish:
    async def test_publish_without_image(self, classified, resident):
        assert classified["title"] == "Vélo enfant"
        assert classified["price"] == 15000
        assert classified["user_id"] == str(resident.id)
        assert classified["user_name"] == "Awa Koné"
        assert classified["date"] == "À l'instant"
        assert classified["image"] is None

    async def test_publish_with_image(self, client, auth_headers):
        response = await client.post(
            "/marketplace/classifieds",
            headers=auth_headers,
            data=_form(),
            files={"image": ("velo.jpg", PNG, "image/jpeg")},
        )

        assert response.status_code == 201
        assert response.json()["image"].startswith("/static/upload/classifieds/")

    async def test_gifts_are_always_free(self, client, auth_headers):
        response = await client.post("/marketplace/classifieds", headers=auth_headers,
                                     data=_form(type="GIVE", price=2000))
        assert response.json()["price"] is None

    async def test_title_and_description_required(self, client, auth_headers, backend):
        response = await client.post("/marketplace/classifieds", headers=auth_headers, data=_form(title="  "))

        assert response.status_code == 422
        assert response.json()["detail"] == "Titre et description requis"
        assert await backend.rows.query("classifieds") == []

    async def test_malformed_json(self, client, auth_headers):
        response = await client.post("/marketplace/classifieds", headers=auth_headers,
                                     data={"classified_data": "{pas du json"})
        assert response.status_code == 400

    async def test_standalone_image_upload(self, client, auth_headers):
        response = await client.post("/marketplace/images", headers=auth_headers,
                                     files={"image": ("photo.webp", PNG, "image/webp")})

        assert response.status_code == 201
        assert response.json()["url"].endswith(".webp")

    async def test_list_is_scoped(self, client, classified, make_user, other_community, headers_for, auth_headers):
        outsider = await make_user(community_id=other_community["id"])

        assert len((await client.get("/marketplace/classifieds", headers=auth_headers)).json()) == 1
        assert (await client.get("/marketplace/classifieds", headers=headers_for(outsider))).json() == []


class TestDelete:
    async def test_author_deletes(self, client, classified, auth_headers, backend):
        response = await client.delete(f"/marketplace/classifieds/{classified['id']}", headers=auth_headers)

        assert response.status_code == 204
        assert await backend.rows.get("classifieds", classified["id"]) is None

    async def test_other_resident_cannot_delete(self, client, classified, make_user, community, headers_for):
        neighbour = await make_user(community_id=community["id"])

        response = await client.delete(f"/marketplace/classifieds/{classified['id']}", headers=headers_for(neighbour))

        assert response.status_code == 403

    async def test_admin_deletes(self, client, classified, admin_headers):
        response = await client.delete(f"/marketplace/classifieds/{classified['id']}", headers=admin_headers)
        assert response.status_code == 204

    async def test_unknown_classified(self, client, auth_headers):
        response = await client.delete("/marketplace/classifieds/inconnue", headers=auth_headers)
        assert response.status_code == 404
