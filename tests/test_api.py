"""
Tests for the team membership HTTP endpoints.
"""
import uuid

import pytest
from aiohttp import test_utils

from peer_teams.api.app import create_app
from peer_teams.api.middlewares import USER_HEADER
from peer_teams.db.enums import UserRole
from peer_teams.services.team import TeamService


@pytest.fixture
async def client(db):
    async with test_utils.TestClient(test_utils.TestServer(create_app())) as test_client:
        yield test_client


@pytest.fixture
async def staff(make):
    return await make.user("ta", role=UserRole.TEACHING_ASSISTANT)


def _as(user):
    return {USER_HEADER: str(user.id)}


@pytest.fixture
async def team_setup(make):
    assignment = await make.assignment("Wiki", max_team_size=2)
    users = []
    for name in ("ada", "bob", "cy"):
        user = await make.user(name)
        await make.enroll(user, assignment_id=assignment.id)
        users.append(user)
    team = await make.team(assignment_id=assignment.id, name="Alpha")
    return assignment, team, users


class TestAuthentication:
    async def test_missing_header(self, client, team_setup):
        _, team, _ = team_setup

        resp = await client.get(f"/api/v1/teams/{team.id}/participants")

        assert resp.status == 403

    async def test_unknown_user(self, client, team_setup):
        _, team, _ = team_setup

        resp = await client.get(f"/api/v1/teams/{team.id}/participants", headers={USER_HEADER: str(uuid.uuid4())})

        assert resp.status == 403

    async def test_student_cannot_list(self, client, team_setup):
        _, team, users = team_setup

        resp = await client.get(f"/api/v1/teams/{team.id}/participants", headers=_as(users[0]))

        assert resp.status == 403


class TestListParticipants:
    async def test_lists_memberships_with_context(self, client, staff, team_setup):
        assignment, team, users = team_setup
        await TeamService().add_member(team, users[0])

        resp = await client.get(f"/api/v1/teams/{team.id}/participants", headers=_as(staff))

        assert resp.status == 200
        body = await resp.json()
        assert body["team"]["name"] == "Alpha"
        assert body["assignment"]["id"] == str(assignment.id)
        assert len(body["team_participants"]) == 1

    @pytest.mark.parametrize("team_id", ["not-a-uuid", str(uuid.UUID(int=1))])
    async def test_missing_team(self, client, staff, team_id):
        resp = await client.get(f"/api/v1/teams/{team_id}/participants", headers=_as(staff))

        assert resp.status == 404


class TestAddParticipant:
    async def test_adds_member(self, client, staff, team_setup):
        _, team, _ = team_setup

        resp = await client.post(f"/api/v1/teams/{team.id}/participants", json={"name": "ada"}, headers=_as(staff))

        assert resp.status == 200
        assert (await resp.json())["message"] == "Participant added successfully."
        assert await TeamService().membership_count(team) == 1

    async def test_full_team(self, client, staff, team_setup):
        _, team, users = team_setup
        await TeamService().add_member(team, users[0])
        await TeamService().add_member(team, users[1])

        resp = await client.post(f"/api/v1/teams/{team.id}/participants", json={"name": "cy"}, headers=_as(staff))

        assert resp.status == 422
        assert (await resp.json())["error"] == "Participant cannot be added to this team"
        assert await TeamService().membership_count(team) == 2

    async def test_already_member(self, client, staff, team_setup):
        _, team, users = team_setup
        await TeamService().add_member(team, users[0])

        resp = await client.post(f"/api/v1/teams/{team.id}/participants", json={"name": "ada"}, headers=_as(staff))

        assert resp.status == 422

    async def test_unknown_user(self, client, staff, team_setup):
        _, team, _ = team_setup

        resp = await client.post(f"/api/v1/teams/{team.id}/participants", json={"name": "ghost"}, headers=_as(staff))

        assert resp.status == 404

    async def test_not_enrolled(self, client, staff, make, team_setup):
        _, team, _ = team_setup
        await make.user("outsider")

        resp = await client.post(f"/api/v1/teams/{team.id}/participants", json={"name": "outsider"}, headers=_as(staff))

        assert resp.status == 404

    async def test_missing_name(self, client, staff, team_setup):
        _, team, _ = team_setup

        resp = await client.post(f"/api/v1/teams/{team.id}/participants", json={}, headers=_as(staff))

        assert resp.status == 400

    async def test_malformed_json(self, client, staff, team_setup):
        _, team, _ = team_setup

        resp = await client.post(
            f"/api/v1/teams/{team.id}/participants",
            data="{name:",
            headers={**_as(staff), "Content-Type": "application/json"},
        )

        assert resp.status == 400


class TestDeleteParticipants:
    async def _members(self, team, users):
        for user in users:
            await TeamService().add_member(team, user)
        return await TeamService().list_memberships(team)

    async def test_single(self, client, staff, team_setup):
        _, team, users = team_setup
        memberships = await self._members(team, users[:2])

        resp = await client.delete(
            f"/api/v1/teams/{team.id}/participants",
            json={"payload": {"item": [str(memberships[0].id)]}},
            headers=_as(staff),
        )

        assert resp.status == 200
        assert (await resp.json())["message"] == "Participant removed successfully"
        assert await TeamService().membership_count(team) == 1

    async def test_many(self, client, staff, team_setup):
        _, team, users = team_setup
        memberships = await self._members(team, users[:2])

        resp = await client.delete(
            f"/api/v1/teams/{team.id}/participants",
            json={"payload": {"item": [str(m.id) for m in memberships]}},
            headers=_as(staff),
        )

        assert (await resp.json())["message"] == "Participants deleted successfully"
        assert await TeamService().membership_count(team) == 0

    async def test_nothing_selected(self, client, staff, team_setup):
        _, team, _ = team_setup

        resp = await client.delete(f"/api/v1/teams/{team.id}/participants", json={"payload": {"item": []}}, headers=_as(staff))

        assert resp.status == 200
        assert (await resp.json())["error"] == "No participants selected"

    async def test_invalid_id(self, client, staff, team_setup):
        _, team, _ = team_setup

        resp = await client.delete(
            f"/api/v1/teams/{team.id}/participants", json={"payload": {"item": ["nope"]}}, headers=_as(staff)
        )

        assert resp.status == 400


class TestUpdateDuty:
    async def test_owner(self, client, make, team_setup):
        _, team, users = team_setup
        await TeamService().add_member(team, users[0])
        membership = (await TeamService().list_memberships(team))[0]

        resp = await client.patch(
            f"/api/v1/teams_participants/{membership.id}/duty",
            json={"teams_participant": {"duty": "scribe"}},
            headers=_as(users[0]),
        )

        assert resp.status == 200
        body = await resp.json()
        assert body["teams_participant"]["duty"] == "scribe"

        entries, _ = await make.db.list_audit_logs(action="services.team.update_duty")
        assert [e.actor_id for e in entries] == [users[0].id]

    async def test_other_user(self, client, team_setup):
        _, team, users = team_setup
        await TeamService().add_member(team, users[0])
        membership = (await TeamService().list_memberships(team))[0]

        resp = await client.patch(
            f"/api/v1/teams_participants/{membership.id}/duty",
            json={"teams_participant": {"duty": "scribe"}},
            headers=_as(users[1]),
        )

        assert resp.status == 403

    async def test_missing_membership(self, client, team_setup):
        _, _, users = team_setup

        resp = await client.patch(
            f"/api/v1/teams_participants/{uuid.uuid4()}/duty",
            json={"teams_participant": {"duty": "scribe"}},
            headers=_as(users[0]),
        )

        assert resp.status == 404

    async def test_missing_payload(self, client, team_setup):
        _, _, users = team_setup

        resp = await client.patch(
            f"/api/v1/teams_participants/{uuid.uuid4()}/duty", json={"duty": "scribe"}, headers=_as(users[0])
        )

        assert resp.status == 400
