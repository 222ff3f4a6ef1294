from typing import List, Optional


def get_ranking(store) -> List[dict]:
    """Visible users ordered by points then completed quests; ties share a rank (1, 1, 3)."""
    users = [u for u in store.list_users() if u.get("show_on_leaderboard", True)]
    users.sort(key=lambda u: (u.get("total_points", 0), u.get("quests_completed", 0)), reverse=True)

    ranking_list = []
    previous = None
    for i, user in enumerate(users):
        score = (user.get("total_points", 0), user.get("quests_completed", 0))
        if score != previous:
            rank = i + 1
            previous = score
        ranking_list.append({
            "id": user["id"],
            "display_name": user.get("display_name"),
            "total_points": score[0],
            "quests_completed": score[1],
            "rank": rank,
        })
    return ranking_list


def get_ranking_entry(store, user_id: str) -> Optional[dict]:
    user = store.get_user(user_id)
    if user is None:
        return None

    for entry in get_ranking(store):
        if entry["id"] == user_id:
            return entry

    # hidden from the leaderboard
    return {
        "id": user_id,
        "display_name": user.get("display_name"),
        "total_points": user.get("total_points", 0),
        "quests_completed": user.get("quests_completed", 0),
        "rank": None,
    }
