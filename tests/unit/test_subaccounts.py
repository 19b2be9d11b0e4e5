"""
Tests for sub-account add/remove policy.
"""
import pytest

from userctl.exceptions import SubaccountError
from userctl.services.user_editor import UserEditor


@pytest.fixture
def editor(repository, locks, config, reporter):
    return UserEditor(repository, locks, config, reporter)


@pytest.fixture
def parent(make_user):
    return make_user("acme", capabilities={"subaccounts": True})


class TestAddSubaccount:

    def test_requires_capability(self, editor, make_user, repository):
        user = make_user("alice")

        with pytest.raises(SubaccountError, match="not allowed to have sub accounts") as exc_info:
            editor.add_subaccount(user, "child")

        assert exc_info.value.exit_code == 5
        assert repository.find_by_login("child") is None

    def test_creates_child_with_parent_and_lock(self, editor, parent, repository, locks, reporter):
        assert editor.add_subaccount(parent, "child") is True

        child = repository.find_by_login("child")
        assert child is not None
        assert child.parent_user_id == parent.id
        assert child.capabilities.gear_sizes == ["small"]
        assert locks.created == [child.id]
        assert "Adding sub account child to user acme... Done." in reporter.out.getvalue()

    def test_already_subaccount_of_same_parent(self, editor, parent, make_user):
        make_user("child", parent_user_id=parent.id)

        with pytest.raises(SubaccountError, match="already a sub account of acme"):
            editor.add_subaccount(parent, "child")

    def test_subaccount_of_different_parent(self, editor, parent, make_user):
        other = make_user("globex", capabilities={"subaccounts": True})
        make_user("child", parent_user_id=other.id)

        with pytest.raises(SubaccountError, match="already a sub account of another user"):
            editor.add_subaccount(parent, "child")

    def test_existing_independent_user(self, editor, parent, make_user):
        make_user("child")

        with pytest.raises(SubaccountError, match="already exists as an independent user"):
            editor.add_subaccount(parent, "child")

    def test_cannot_be_own_parent(self, editor, parent):
        with pytest.raises(SubaccountError, match="cannot be a sub account of itself"):
            editor.add_subaccount(parent, "acme")

    def test_lock_released_on_policy_failure(self, editor, make_user, locks):
        user = make_user("alice")

        with pytest.raises(SubaccountError):
            editor.add_subaccount(user, "child")

        assert locks.held_now == set()
        assert len(locks.released) == 1


class TestRemoveSubaccount:

    def test_removes_and_deletes_owned_objects(self, editor, parent, make_user, repository, add_application):
        child = make_user("child", parent_user_id=parent.id)
        add_application(child, "childns", "app1", additional_storage=2)

        assert editor.remove_subaccount(parent, "child") is True

        assert repository.find_by_login("child") is None
        assert repository.count_domains(child.id) == 0
        assert repository.applications_for_user(child.id) == []
        assert repository.find_by_login("acme") is not None

    def test_missing_subaccount(self, editor, parent):
        with pytest.raises(SubaccountError, match="not found") as exc_info:
            editor.remove_subaccount(parent, "ghost")

        assert exc_info.value.exit_code == 5

    def test_parent_mismatch(self, editor, parent, make_user, repository):
        other = make_user("globex", capabilities={"subaccounts": True})
        make_user("child", parent_user_id=other.id)

        with pytest.raises(SubaccountError, match="is not a sub account of acme"):
            editor.remove_subaccount(parent, "child")

        assert repository.find_by_login("child") is not None

    def test_independent_user_is_not_removed(self, editor, parent, make_user, repository):
        make_user("bystander")

        with pytest.raises(SubaccountError):
            editor.remove_subaccount(parent, "bystander")

        assert repository.find_by_login("bystander") is not None

    def test_subaccount_with_own_subaccounts(self, editor, parent, make_user, repository):
        child = make_user("child", parent_user_id=parent.id)
        make_user("grandchild", parent_user_id=child.id)

        with pytest.raises(SubaccountError, match="has sub accounts of its own"):
            editor.remove_subaccount(parent, "child")

        assert repository.find_by_login("child") is not None
