"""Tests des propositions et des votes."""
import asyncio

import pytest_asyncio

from quartier.governance import services
from quartier.realtime.visibility import Actor


@pytest_asyncio.fixture
async def proposal(client, admin_headers):
    response = await client.post("/governance/proposals", headers=admin_headers, json={
        "title": "Installer des lampadaires rue 12",
        "description": "Financement par la caisse commune",
        "deadline": "2024-12-31",
    })
    assert response.status_code == 201
    return response.json()


class TestProposals:
    async def test_new_proposal_is_open_with_zero_counts(self, proposal):
        assert proposal["status"] == "OPEN"
        assert (proposal["votes_for"], proposal["votes_against"], proposal["votes_abstain"]) == (0, 0, 0)

    async def test_residents_cannot_create(self, client, auth_headers):
        response = await client.post("/governance/proposals", headers=auth_headers, json={"title": "Fête"})
        assert response.status_code == 403

    async def test_list_is_scoped_to_community(self, client, proposal, make_user, other_community, headers_for,
                                               auth_headers):
        outsider = await make_user(community_id=other_community["id"])

        mine = (await client.get("/governance/proposals", headers=auth_headers)).json()
        theirs = (await client.get("/governance/proposals", headers=headers_for(outsider))).json()

        assert [p["id"] for p in mine] == [proposal["id"]]
        assert theirs == []


class TestVotes:
    async def test_vote_increments_counter(self, client, proposal, auth_headers):
        response = await client.post(f"/governance/proposals/{proposal['id']}/vote", headers=auth_headers,
                                     json={"choice": "FOR"})

        assert response.status_code == 200
        assert response.json()["votes_for"] == 1

        my_votes = (await client.get("/governance/my-votes", headers=auth_headers)).json()
        assert my_votes == {proposal["id"]: "FOR"}

    async def test_second_vote_is_a_conflict(self, client, proposal, auth_headers):
        url = f"/governance/proposals/{proposal['id']}/vote"
        await client.post(url, headers=auth_headers, json={"choice": "FOR"})

        response = await client.post(url, headers=auth_headers, json={"choice": "AGAINST"})

        assert response.status_code == 409
        assert response.json()["detail"] == "Vous avez déjà voté."
        refreshed = (await client.get("/governance/proposals", headers=auth_headers)).json()[0]
        assert (refreshed["votes_for"], refreshed["votes_against"]) == (1, 0)

    async def test_closed_proposal_refuses_votes(self, client, proposal, auth_headers, admin_headers):
        closed = await client.post(f"/governance/proposals/{proposal['id']}/close", headers=admin_headers)
        assert closed.json()["status"] == "CLOSED"

        response = await client.post(f"/governance/proposals/{proposal['id']}/vote", headers=auth_headers,
                                     json={"choice": "ABSTAIN"})

        assert response.status_code == 422
        assert response.json()["detail"] == "Le vote est clos."

    async def test_invalid_choice(self, client, proposal, auth_headers):
        response = await client.post(f"/governance/proposals/{proposal['id']}/vote", headers=auth_headers,
                                     json={"choice": "PEUT-ETRE"})
        assert response.status_code == 422

    async def test_vote_on_other_community_proposal(self, client, proposal, make_user, other_community,
                                                    headers_for):
        outsider = await make_user(community_id=other_community["id"])
        response = await client.post(f"/governance/proposals/{proposal['id']}/vote", headers=headers_for(outsider),
                                     json={"choice": "FOR"})
        assert response.status_code == 404


class TestConcurrentVotes:
    async def test_simultaneous_votes_are_all_counted(self, yielding_rows):
        proposal = await yielding_rows.insert("proposals", {
            "community_id": "c1", "title": "Ramassage des ordures", "status": "OPEN",
            "votes_for": 0, "votes_against": 0, "votes_abstain": 0,
        })
        voters = [Actor(user_id=str(n), community_id="c1") for n in range(10)]

        await asyncio.gather(*(services.cast_vote(voter, proposal["id"], "FOR") for voter in voters))

        stored = await yielding_rows.get("proposals", proposal["id"])
        assert len(await yielding_rows.query("votes")) == 10
        assert stored["votes_for"] == 10
        assert stored["votes_against"] == 0
