from app.pixelforge.models import ROLE_ADMIN, ROLE_DEVELOPER, ROLE_PROJECT_LEAD
from app.pixelforge.rbac import ProjectMembership, can_delete_group, can_delete_version, can_read, can_write

CREATOR = 10
ASSIGNEE = 11
STRANGER = 12
ADMIN = 99

PROJECT = ProjectMembership(project_id=1, created_by_id=CREATOR, assigned_user_ids=frozenset({ASSIGNEE}))


def test_admin_can_do_everything_even_without_membership():
    for check in (can_read, can_write, can_delete_version, can_delete_group):
        assert check(ROLE_ADMIN, ADMIN, PROJECT)
    # role matching is case-insensitive
    assert can_delete_version("admin", ADMIN, PROJECT)


def test_creator_can_read_write_and_delete():
    for check in (can_read, can_write, can_delete_version, can_delete_group):
        assert check(ROLE_PROJECT_LEAD, CREATOR, PROJECT)


def test_assignee_can_read_and_write_but_not_delete():
    assert can_read(ROLE_DEVELOPER, ASSIGNEE, PROJECT)
    assert can_write(ROLE_DEVELOPER, ASSIGNEE, PROJECT)
    assert not can_delete_version(ROLE_DEVELOPER, ASSIGNEE, PROJECT)
    assert not can_delete_group(ROLE_DEVELOPER, ASSIGNEE, PROJECT)


def test_non_member_gets_nothing():
    for check in (can_read, can_write, can_delete_version, can_delete_group):
        assert not check(ROLE_PROJECT_LEAD, STRANGER, PROJECT)


def test_anonymous_gets_nothing():
    for check in (can_read, can_write, can_delete_version, can_delete_group):
        assert not check(None, None, PROJECT)


def test_membership_snapshot_from_project(session, seeded):
    from app.pixelforge.models import Project

    m = ProjectMembership.from_project(session.get(Project, seeded.project_id))
    assert m.created_by_id == seeded.lead
    assert m.assigned_user_ids == frozenset({seeded.dev})
