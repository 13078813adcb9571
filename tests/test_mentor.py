"""
Tests for automatic mentor assignment on mentored teams.
"""
import pytest

from peer_teams.db.schemas.context import TopicCreate
from peer_teams.services.mentor import MentorService
from peer_teams.services.notifications import NotificationService
from peer_teams.services.team import TeamService


async def _students(make, assignment, count, first_tg_id=100):
    users = []
    for i in range(count):
        user = await make.user(tg_id=first_tg_id + i, email=f"s{first_tg_id + i}@example.com")
        await make.enroll(user, assignment_id=assignment.id)
        users.append(user)
    return users


async def _mentor(make, assignment, name, tg_id):
    user = await make.user(name, full_name=name.title(), tg_id=tg_id)
    participant = await make.enroll(user, assignment_id=assignment.id, can_mentor=True)
    return user, participant


@pytest.fixture
async def mentored_assignment(make):
    return await make.assignment("Design Doc", max_team_size=4, auto_assign_mentor=True)


class TestAssignMentor:
    async def test_threshold_boundary(self, make, bot, mentored_assignment):
        students = await _students(make, mentored_assignment, 3)
        await _mentor(make, mentored_assignment, "morgan", 900)
        team = await make.team(assignment_id=mentored_assignment.id)
        service = TeamService()

        await service.add_member(team, students[0])
        await service.add_member(team, students[1])
        # two of four: exactly half, no mentor yet
        assert await make.db.team_has_mentor(team.id) is False

        await service.add_member(team, students[2])

        assert await make.db.team_has_mentor(team.id) is True
        assert await service.size(team) == 3
        assert await service.membership_count(team) == 4
        assert await service.is_full(team) is False

    async def test_notifications_sent(self, make, bot, mentored_assignment):
        students = await _students(make, mentored_assignment, 3)
        await _mentor(make, mentored_assignment, "morgan", 900)
        team = await make.team(assignment_id=mentored_assignment.id)
        for student in students:
            await TeamService().add_member(team, student)

        await NotificationService().drain()

        recipients = sorted(chat_id for chat_id, _ in bot.sent)
        assert recipients == [100, 101, 102, 900]
        to_team = [text for chat_id, text in bot.sent if chat_id == 100][0]
        to_mentor = [text for chat_id, text in bot.sent if chat_id == 900][0]
        assert to_team.startswith("[Peer Teams] New Mentor Assignment")
        assert "Morgan has been assigned as your mentor for assignment Design Doc." in to_team
        assert "s101@example.com" in to_team
        assert to_mentor.startswith("[Peer Teams] You have been assigned as a Mentor")
        assert "Morgan" not in to_mentor.split("Current team members:")[1]

    async def test_failed_delivery_keeps_mentor(self, make, bot, mentored_assignment):
        bot.fail = True
        students = await _students(make, mentored_assignment, 3)
        await _mentor(make, mentored_assignment, "morgan", 900)
        team = await make.team(assignment_id=mentored_assignment.id)
        for student in students:
            await TeamService().add_member(team, student)

        await NotificationService().drain()

        assert await make.db.team_has_mentor(team.id) is True

    async def test_auto_mentor_disabled(self, make):
        assignment = await make.assignment(max_team_size=4)
        students = await _students(make, assignment, 3)
        await _mentor(make, assignment, "morgan", 900)
        team = await make.team(assignment_id=assignment.id, mentored=True)
        for student in students:
            await TeamService().add_member(team, student)

        assert await make.db.team_has_mentor(team.id) is False
        assert await MentorService().assign_mentor(team) is None

    async def test_assignment_with_topics(self, make, mentored_assignment):
        await make.db.create_topic(TopicCreate(name="Caching", assignment_id=mentored_assignment.id))
        students = await _students(make, mentored_assignment, 3)
        await _mentor(make, mentored_assignment, "morgan", 900)
        team = await make.team(assignment_id=mentored_assignment.id)
        for student in students:
            await TeamService().add_member(team, student)

        assert await make.db.team_has_mentor(team.id) is False

    async def test_no_mentor_available(self, make, mentored_assignment):
        students = await _students(make, mentored_assignment, 3)
        team = await make.team(assignment_id=mentored_assignment.id)
        for student in students:
            assert await TeamService().add_member(team, student) is True

        assert await make.db.team_has_mentor(team.id) is False
        assert await MentorService().assign_mentor(team) is None

    async def test_existing_mentor_is_kept(self, make, mentored_assignment):
        students = await _students(make, mentored_assignment, 3)
        await _mentor(make, mentored_assignment, "morgan", 900)
        await _mentor(make, mentored_assignment, "riley", 901)
        team = await make.team(assignment_id=mentored_assignment.id)
        for student in students:
            await TeamService().add_member(team, student)

        assert await MentorService().assign_mentor(team) is None
        assert await TeamService().membership_count(team) == 4

    async def test_course_team_never_gets_mentor(self, make):
        course = await make.course()
        team = await make.team(course_id=course.id)

        assert await MentorService().assign_mentor(team) is None


class TestSelectMentor:
    async def test_empty_pool(self, make, mentored_assignment):
        assert await MentorService().select_mentor(mentored_assignment.id) is None

    async def test_tie_goes_to_lowest_id(self, make, mentored_assignment):
        _, first = await _mentor(make, mentored_assignment, "morgan", 900)
        _, second = await _mentor(make, mentored_assignment, "riley", 901)

        chosen = await MentorService().select_mentor(mentored_assignment.id)

        assert chosen.id == min(first.id, second.id)

    async def test_least_loaded_wins(self, make, mentored_assignment):
        _, first = await _mentor(make, mentored_assignment, "morgan", 900)
        _, second = await _mentor(make, mentored_assignment, "riley", 901)
        students = await _students(make, mentored_assignment, 6)
        teams = [await make.team(assignment_id=mentored_assignment.id) for _ in range(2)]
        for team, group in zip(teams, (students[:3], students[3:])):
            for student in group:
                await TeamService().add_member(team, student)

        mentor_ids = set()
        for team in teams:
            for participant in await TeamService().participants(team):
                if participant.can_mentor:
                    mentor_ids.add(participant.id)

        assert mentor_ids == {first.id, second.id}

    async def test_load_counts_teams_of_this_assignment(self, make, mentored_assignment):
        other = await make.assignment("Elsewhere", max_team_size=4)
        user, busy = await _mentor(make, mentored_assignment, "morgan", 900)
        _, idle = await _mentor(make, mentored_assignment, "riley", 901)
        await make.enroll(user, assignment_id=other.id, can_mentor=True)
        await TeamService().add_member(await make.team(assignment_id=mentored_assignment.id), user)
        for _ in range(2):
            await TeamService().add_member(await make.team(assignment_id=other.id), user)

        loads = await make.db.mentor_team_counts(mentored_assignment.id)

        assert loads == {busy.id: 1, idle.id: 0}
        assert (await MentorService().select_mentor(mentored_assignment.id)).id == idle.id
