"""Tests du fil d'actualité du quartier."""
import json

import pytest_asyncio

PNG = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR"
COVER = "/static/upload/news/lampadaires.jpg"


def _form(**fields):
    article = {
        "title": "Coupure d'eau samedi",
        "category": "URGENT",
        "image": COVER,
        "blocks": [
            {"type": "heading", "content": "Travaux SODECI"},
            {"type": "paragraph", "content": "Coupure de 8h à 14h."},
            {"type": "paragraph", "content": "   "},
        ],
    }
    article.update(fields)
    return {"article_data": json.dumps(article)}


@pytest_asyncio.fixture
async def article(client, admin_headers):
    response = await client.post("/articles", headers=admin_headers, data=_form())
    assert response.status_code == 201
    return response.json()


class TestPublish:
    async def test_admin_publishes(self, article, admin, community):
        assert article["title"] == "Coupure d'eau samedi"
        assert article["category"] == "URGENT"
        assert article["author"] == "Moussa Traoré"
        assert article["author_id"] == str(admin.id)
        assert article["community_id"] == community["id"]
        assert article["published"] is True
        assert article["date"]
        # les blocs vides sont retirés
        assert [b["content"] for b in article["blocks"]] == ["Travaux SODECI", "Coupure de 8h à 14h."]
        assert all(b["id"] for b in article["blocks"])

    async def test_uploaded_cover_replaces_url(self, client, admin_headers):
        response = await client.post("/articles", headers=admin_headers, data=_form(image=None),
                                     files={"image": ("une.png", PNG, "image/png")})

        assert response.status_code == 201
        assert response.json()["image"].startswith("/static/upload/news/")

    async def test_title_and_image_required(self, client, admin_headers, backend):
        response = await client.post("/articles", headers=admin_headers, data=_form(image=None))

        assert response.status_code == 422
        assert response.json()["detail"] == "Titre et image obligatoires"
        assert await backend.rows.query("articles") == []

    async def test_residents_cannot_publish(self, client, auth_headers):
        response = await client.post("/articles", headers=auth_headers, data=_form())
        assert response.status_code == 403

    async def test_unknown_category(self, client, admin_headers):
        response = await client.post("/articles", headers=admin_headers, data=_form(category="PEOPLE"))
        assert response.status_code == 422

    async def test_standalone_cover_upload(self, client, admin_headers):
        response = await client.post("/articles/images", headers=admin_headers,
                                     files={"image": ("une.jpg", PNG, "image/jpeg")})

        assert response.status_code == 201
        assert response.json()["url"].startswith("/static/upload/news/")


class TestList:
    async def test_sorted_by_date_newest_first(self, client, admin_headers, auth_headers):
        for title, when in (("Ancien", "2024-03-01T09:00:00+00:00"), ("Récent", "2024-05-01T09:00:00+00:00")):
            await client.post("/articles", headers=admin_headers, data=_form(title=title, scheduled_at=when))

        articles = (await client.get("/articles", headers=auth_headers)).json()

        assert [a["title"] for a in articles] == ["Récent", "Ancien"]
        assert articles[0]["date"] == "2024-05-01T09:00:00+00:00"

    async def test_drafts_are_hidden_from_residents(self, client, admin_headers, auth_headers, article):
        await client.post("/articles", headers=admin_headers, data=_form(title="Brouillon", published=False))

        seen_by_resident = (await client.get("/articles", headers=auth_headers)).json()
        seen_by_admin = (await client.get("/articles", headers=admin_headers)).json()

        assert [a["title"] for a in seen_by_resident] == [article["title"]]
        assert {a["title"] for a in seen_by_admin} == {article["title"], "Brouillon"}

    async def test_list_is_scoped(self, client, article, make_user, other_community, headers_for):
        outsider = await make_user(community_id=other_community["id"])
        assert (await client.get("/articles", headers=headers_for(outsider))).json() == []


class TestEdit:
    async def test_update(self, client, article, admin_headers):
        response = await client.put(f"/articles/{article['id']}", headers=admin_headers,
                                    json={"title": " Coupure reportée ", "scheduled_at": "2024-06-08T08:00:00Z"})

        assert response.status_code == 200
        updated = response.json()
        assert updated["title"] == "Coupure reportée"
        assert updated["date"] == "2024-06-08T08:00:00+00:00"
        assert updated["category"] == "URGENT"

    async def test_update_cannot_blank_the_title(self, client, article, admin_headers):
        response = await client.put(f"/articles/{article['id']}", headers=admin_headers, json={"title": "  "})
        assert response.status_code == 422

    async def test_empty_update(self, client, article, admin_headers):
        response = await client.put(f"/articles/{article['id']}", headers=admin_headers, json={})
        assert response.status_code == 422

    async def test_residents_cannot_edit(self, client, article, auth_headers):
        response = await client.put(f"/articles/{article['id']}", headers=auth_headers, json={"title": "x"})
        assert response.status_code == 403

    async def test_delete(self, client, article, admin_headers, backend):
        response = await client.delete(f"/articles/{article['id']}", headers=admin_headers)

        assert response.status_code == 204
        assert await backend.rows.get("articles", article["id"]) is None

    async def test_delete_from_another_community(self, client, article, make_user, other_community, headers_for):
        other_admin = await make_user(community_id=other_community["id"], role="ADMIN")

        response = await client.delete(f"/articles/{article['id']}", headers=headers_for(other_admin))

        assert response.status_code == 404
