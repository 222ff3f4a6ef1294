import pytest

from guildhall.errors import NotFoundError, StaleStateError
from guildhall.store import MemoryStore


@pytest.fixture
def memory():
    return MemoryStore()


def seed(memory, objective_statuses=("approved",)):
    memory.upsert_user("alice", {"total_points": 10, "quests_completed": 0})
    user_quest = memory.create_user_quest("alice_q1", {"user_id": "alice", "quest_id": "q1", "status": "ready_to_claim"})
    for i, status in enumerate(objective_statuses):
        memory.put_user_objective(f"alice_q1_o{i}", {"user_quest_id": "alice_q1", "objective_id": f"o{i}", "status": status})
    return user_quest


class TestConditionalWrites:
    def test_update_with_expected_status(self, memory):
        seed(memory)
        updated = memory.update_user_quest("alice_q1", {"status": "in_progress"}, expected_status=["ready_to_claim"])
        assert updated["status"] == "in_progress"

    def test_stale_status_is_refused(self, memory):
        seed(memory)
        with pytest.raises(StaleStateError) as excinfo:
            memory.update_user_quest("alice_q1", {"status": "abandoned"}, expected_status=["accepted", "in_progress"])
        assert excinfo.value.current_status == "ready_to_claim"
        assert memory.get_user_quest("alice_q1")["status"] == "ready_to_claim"

    def test_create_is_exclusive(self, memory):
        seed(memory)
        with pytest.raises(StaleStateError) as excinfo:
            memory.create_user_quest("alice_q1", {"user_id": "alice", "quest_id": "q1", "status": "accepted"})
        assert excinfo.value.reason == "exists"

    def test_update_missing_row(self, memory):
        with pytest.raises(NotFoundError):
            memory.update_user_objective("missing", {"status": "approved"})

    def test_rows_are_copies(self, memory):
        user_quest = seed(memory)
        user_quest["status"] = "completed"
        assert memory.get_user_quest("alice_q1")["status"] == "ready_to_claim"


class TestAwardCompletion:
    def test_award_credits_once(self, memory):
        seed(memory)
        changes = {"status": "completed", "points_awarded": 100}
        memory.award_completion("alice_q1", ["ready_to_claim"], changes, 100)
        with pytest.raises(StaleStateError):
            memory.award_completion("alice_q1", ["ready_to_claim"], changes, 100)

        user = memory.get_user("alice")
        assert user["total_points"] == 110
        assert user["quests_completed"] == 1

    def test_award_requires_approved_objectives(self, memory):
        seed(memory, objective_statuses=("approved", "available"))
        with pytest.raises(StaleStateError) as excinfo:
            memory.award_completion("alice_q1", ["ready_to_claim"], {"status": "completed"}, 100)
        assert excinfo.value.reason == "objectives"
        assert memory.get_user("alice")["total_points"] == 10

    def test_award_requires_objective_rows(self, memory):
        seed(memory, objective_statuses=())
        with pytest.raises(StaleStateError) as excinfo:
            memory.award_completion("alice_q1", ["ready_to_claim"], {"status": "completed"}, 100)
        assert excinfo.value.reason == "objectives"
        assert memory.get_user_quest("alice_q1")["status"] == "ready_to_claim"
        assert memory.get_user("alice")["total_points"] == 10


class TestQueries:
    def test_list_user_quests_by_status(self, memory):
        seed(memory)
        memory.create_user_quest("bob_q1", {"user_id": "bob", "quest_id": "q1", "status": "abandoned"})
        assert [uq["id"] for uq in memory.list_user_quests(quest_id="q1", statuses=["ready_to_claim"])] == ["alice_q1"]
        assert len(memory.list_user_quests(quest_id="q1")) == 2

    def test_objectives_sorted_by_display_order(self, memory):
        memory.create_objective({"quest_id": "q1", "title": "second", "display_order": 1})
        memory.create_objective({"quest_id": "q1", "title": "first", "display_order": 0})
        assert [o["title"] for o in memory.list_objectives("q1")] == ["first", "second"]

    def test_role_members(self, memory):
        memory.add_role("gm1", "gm")
        memory.add_role("root", "admin")
        memory.add_role("root", "gm")
        assert memory.list_role_members(["gm", "admin"]) == ["gm1", "root"]
        assert memory.get_roles("root") == {"gm", "admin"}
