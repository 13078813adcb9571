"""
Tests for participant enrollment, handles, roles, deletion and participant import/export.
"""
import uuid

import pytest

from peer_teams.db.enums import AuthorizationRole, UserRole
from peer_teams.db.schemas.context import ContextRef
from peer_teams.db.schemas.import_export import ParticipantExportOptions, ParticipantImportRow
from peer_teams.db.schemas.participant import Capabilities
from peer_teams.errors import (
    DependentAssociationError, DuplicateContextError, ImportRowError, NotFoundError, ValidationError,
)
from peer_teams.services.participant import IndividualReviewer, ParticipantService, TeamReviewer
from peer_teams.services.team import TeamService
from peer_teams.services.user import UserService


class TestBindContext:
    async def test_creates_assignment_participant(self, make):
        assignment = await make.assignment()
        user = await make.user("alice")

        participant = await ParticipantService().bind_context(user, assignment_id=assignment.id)

        assert participant.assignment_id == assignment.id
        assert participant.course_id is None
        assert participant.handle == "alice"
        assert participant.can_submit and participant.can_review and not participant.can_mentor

    async def test_capability_flags_are_stored(self, make):
        course = await make.course()
        user = await make.user()

        participant = await ParticipantService().bind_context(user, course_id=course.id, can_mentor=True)

        assert participant.can_mentor is True
        assert participant.context == ContextRef.of(course_id=course.id)

    async def test_both_contexts_rejected(self, make):
        assignment = await make.assignment()
        course = await make.course()
        user = await make.user()

        with pytest.raises(ValidationError):
            await ParticipantService().bind_context(user, assignment_id=assignment.id, course_id=course.id)

    async def test_no_context_rejected(self, make):
        user = await make.user()

        with pytest.raises(ValidationError):
            await ParticipantService().bind_context(user)

    async def test_unknown_context(self, make):
        user = await make.user()
        ghost = uuid.uuid4()

        with pytest.raises(NotFoundError):
            await ParticipantService().bind_context(user, assignment_id=ghost)

    async def test_same_context_twice(self, make):
        assignment = await make.assignment()
        user = await make.user()
        await ParticipantService().bind_context(user, assignment_id=assignment.id)

        with pytest.raises(DuplicateContextError):
            await ParticipantService().bind_context(user, assignment_id=assignment.id)

    async def test_same_user_in_two_contexts(self, make):
        first = await make.assignment("Program 1")
        second = await make.assignment("Program 2")
        user = await make.user()

        a = await ParticipantService().bind_context(user, assignment_id=first.id)
        b = await ParticipantService().bind_context(user, assignment_id=second.id)

        assert a.id != b.id
        assert a.user_id == b.user_id


class TestComputeHandle:
    async def test_colliding_personal_handles(self, make):
        assignment = await make.assignment()
        first = await make.user("alice", handle="ace")
        second = await make.user("bob", handle="ace")

        p1 = await make.enroll(first, assignment_id=assignment.id)
        p2 = await make.enroll(second, assignment_id=assignment.id)

        assert p1.handle == "ace"
        assert p2.handle == "bob"

    async def test_idempotent(self, make):
        assignment = await make.assignment()
        user = await make.user("alice", handle="ace")
        participant = await make.enroll(user, assignment_id=assignment.id)
        service = ParticipantService()

        assert await service.compute_handle(participant) == "ace"
        assert await service.compute_handle(participant) == "ace"

    async def test_blank_handle_falls_back_to_name(self, make):
        assignment = await make.assignment()
        user = await make.user("carol", handle="   ")

        participant = await make.enroll(user, assignment_id=assignment.id)

        assert participant.handle == "carol"

    async def test_handle_is_scoped_to_context(self, make):
        first = await make.assignment("Program 1")
        second = await make.assignment("Program 2")
        alice = await make.user("alice", handle="ace")
        bob = await make.user("bob", handle="ace")

        await make.enroll(alice, assignment_id=first.id)
        p2 = await make.enroll(bob, assignment_id=second.id)

        assert p2.handle == "ace"

    async def test_recomputes_after_handle_change(self, make):
        assignment = await make.assignment()
        user = await make.user("alice")
        participant = await make.enroll(user, assignment_id=assignment.id)
        await UserService().change_handle(user, "ace")

        assert await ParticipantService().compute_handle(participant) == "ace"
        stored = await make.db.get_participant(participant.id)
        assert stored.handle == "ace"


@pytest.mark.parametrize(
    "flags, expected",
    [
        ((True, True, True, True), AuthorizationRole.MENTOR),
        ((False, False, False, True), AuthorizationRole.MENTOR),
        ((False, True, True, True), AuthorizationRole.MENTOR),
        ((False, False, False, False), AuthorizationRole.PARTICIPANT),
        ((False, True, True, False), AuthorizationRole.READER),
        ((True, False, False, False), AuthorizationRole.SUBMITTER),
        ((False, True, False, False), AuthorizationRole.REVIEWER),
        ((True, True, True, False), AuthorizationRole.PARTICIPANT),
    ],
)
def test_authorization_role(flags, expected):
    can_submit, can_review, can_take_quiz, can_mentor = flags
    capabilities = Capabilities(
        can_submit=can_submit, can_review=can_review, can_take_quiz=can_take_quiz, can_mentor=can_mentor
    )

    assert ParticipantService.authorization_role(capabilities) == expected


class TestDelete:
    async def test_unforced_with_review_map(self, make):
        assignment = await make.assignment()
        reviewer_user, author = await make.enrolled_users(2, assignment_id=assignment.id)
        reviewer = await make.db.find_participant(reviewer_user.id, ContextRef.of(assignment_id=assignment.id))
        team = await make.team(assignment_id=assignment.id)
        await TeamService().add_member(team, author)
        await TeamService().assign_reviewer(team, reviewer)

        with pytest.raises(DependentAssociationError):
            await ParticipantService().delete(reviewer)

        assert await make.db.get_participant(reviewer.id) is not None

    async def test_unforced_while_on_team(self, make):
        assignment = await make.assignment()
        (user,) = await make.enrolled_users(1, assignment_id=assignment.id)
        participant = await make.db.find_participant(user.id, ContextRef.of(assignment_id=assignment.id))
        team = await make.team(assignment_id=assignment.id)
        await TeamService().add_member(team, user)

        with pytest.raises(DependentAssociationError):
            await ParticipantService().delete(participant)

    async def test_unforced_without_associations(self, make):
        assignment = await make.assignment()
        participant = await make.enroll(await make.user(), assignment_id=assignment.id)

        await ParticipantService().delete(participant)

        assert await make.db.get_participant(participant.id) is None

    async def test_forced_removes_maps_and_sole_member_team(self, make):
        assignment = await make.assignment()
        reviewer_user, author = await make.enrolled_users(2, assignment_id=assignment.id)
        context = ContextRef.of(assignment_id=assignment.id)
        reviewer = await make.db.find_participant(reviewer_user.id, context)
        own_team = await make.team(assignment_id=assignment.id)
        await TeamService().add_member(own_team, reviewer_user)
        reviewed = await make.team(assignment_id=assignment.id)
        await TeamService().add_member(reviewed, author)
        await TeamService().assign_reviewer(reviewed, reviewer)

        await ParticipantService().delete(reviewer, force=True)

        assert await make.db.get_participant(reviewer.id) is None
        assert await make.db.get_team(own_team.id) is None
        assert await make.db.list_response_maps(reviewee_team_id=reviewed.id) == []
        assert await make.db.get_team(reviewed.id) is not None

    async def test_forced_keeps_shared_team(self, make):
        assignment = await make.assignment(max_team_size=4)
        leaving, staying = await make.enrolled_users(2, assignment_id=assignment.id)
        participant = await make.db.find_participant(leaving.id, ContextRef.of(assignment_id=assignment.id))
        team = await make.team(assignment_id=assignment.id)
        await TeamService().add_member(team, leaving)
        await TeamService().add_member(team, staying)

        await ParticipantService().delete(participant, force=True)

        assert await TeamService().membership_count(team) == 1
        team_node = await make.db.get_team_node(team.id)
        assert len(await make.db.list_child_nodes(team_node.id)) == 1


class TestReviewer:
    async def test_individual_when_team_reviewing_disabled(self, make):
        assignment = await make.assignment()
        participant = await make.enroll(await make.user(), assignment_id=assignment.id)

        reviewer = await ParticipantService().reviewer(participant)

        assert isinstance(reviewer, IndividualReviewer)
        assert reviewer.id == participant.id

    async def test_team_when_team_reviewing_enabled(self, make):
        assignment = await make.assignment(team_reviewing_enabled=True)
        user = await make.user()
        participant = await make.enroll(user, assignment_id=assignment.id)
        team = await make.team(assignment_id=assignment.id)
        await TeamService().add_member(team, user)

        reviewer = await ParticipantService().reviewer(participant)

        assert isinstance(reviewer, TeamReviewer)
        assert reviewer.id == team.id

    async def test_course_participant_cannot_review(self, make):
        course = await make.course()
        participant = await make.enroll(await make.user(), course_id=course.id)

        with pytest.raises(ValidationError):
            await ParticipantService().reviewer(participant)

    async def test_reviewers_of_participant_team(self, make):
        assignment = await make.assignment()
        author, critic = await make.enrolled_users(2, assignment_id=assignment.id)
        context = ContextRef.of(assignment_id=assignment.id)
        team = await make.team(assignment_id=assignment.id)
        await TeamService().add_member(team, author)
        critic_participant = await make.db.find_participant(critic.id, context)
        await TeamService().assign_reviewer(team, critic_participant)

        author_participant = await make.db.find_participant(author.id, context)
        reviewers = await ParticipantService().reviewers(author_participant)

        assert [r.id for r in reviewers] == [critic_participant.id]


class TestCopy:
    async def test_copy_to_course_reuses_existing(self, make):
        course = await make.course()
        assignment = await make.assignment(course_id=course.id)
        participant = await make.enroll(await make.user(), assignment_id=assignment.id)
        service = ParticipantService()

        first = await service.copy_to_course(participant, course.id)
        second = await service.copy_to_course(participant, course.id)

        assert first.course_id == course.id
        assert first.id == second.id

    async def test_copy_to_assignment(self, make):
        course = await make.course()
        assignment = await make.assignment()
        user = await make.user("dana", handle="dee")
        participant = await make.enroll(user, course_id=course.id)

        copied = await ParticipantService().copy_to_assignment(participant, assignment.id)

        assert copied.assignment_id == assignment.id
        assert copied.handle == "dee"


class TestImportExport:
    async def test_import_existing_user(self, make):
        assignment = await make.assignment()
        await make.user("erin")

        participant = await ParticipantService().import_row(
            ParticipantImportRow(username=" erin "), assignment_id=assignment.id
        )

        assert participant is not None
        assert participant.handle == "erin"

    async def test_import_twice_is_noop(self, make):
        course = await make.course()
        await make.user("erin")
        row = ParticipantImportRow(username="erin")

        assert await ParticipantService().import_row(row, course_id=course.id) is not None
        assert await ParticipantService().import_row(row, course_id=course.id) is None

    async def test_import_requires_username(self, make):
        assignment = await make.assignment()

        with pytest.raises(ImportRowError):
            await ParticipantService().import_row(ParticipantImportRow(username="  "), assignment_id=assignment.id)

    async def test_import_unknown_user_with_short_row(self, make):
        assignment = await make.assignment()

        with pytest.raises(ImportRowError):
            await ParticipantService().import_row(
                ParticipantImportRow(username="frank", full_name="Frank Smith"), assignment_id=assignment.id
            )

        assert await make.db.get_user_by_name("frank") is None

    async def test_import_unknown_user_with_full_row(self, make):
        assignment = await make.assignment()
        row = ParticipantImportRow(
            username="frank", full_name="Frank Smith", email="frank@example.com", password="secret"
        )

        participant = await ParticipantService().import_row(row, assignment_id=assignment.id)

        user = await make.db.get_user_by_name("frank")
        assert user is not None and user.full_name == "Frank Smith"
        assert participant.user_id == user.id

    async def test_export_rows(self, make):
        assignment = await make.assignment()
        user = await make.user("gina", full_name="Gina Lee", email="gina@example.com", handle="gl", role=UserRole.STUDENT)
        await make.enroll(user, assignment_id=assignment.id)
        options = ParticipantExportOptions(personal_details=True, role=True, handle=True)

        rows = await ParticipantService().export_rows(ContextRef.of(assignment_id=assignment.id), options)

        assert rows == [["gina", "Gina Lee", "gina@example.com", "student", "gl"]]
        assert ParticipantService.export_fields(options) == ["name", "full name", "email", "role", "handle"]


async def test_display_name(make):
    assignment = await make.assignment()
    participant = await make.enroll(await make.user("hank", full_name="Hank Hill"), assignment_id=assignment.id)
    service = ParticipantService()

    assert await service.display_name(participant, anonymized=False) == "Hank Hill"
    assert await service.display_name(participant, anonymized=True) == f"Anonymized_Participant_{participant.id}"
