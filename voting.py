"""Toggle helpers for id-list membership on embedded documents."""

from typing import List


def toggle_member(ids: List[str], user_id: str) -> bool:
    """Add or remove `user_id` in place. Returns True if it is now present."""
    if user_id in ids:
        ids[:] = [i for i in ids if i != user_id]
        return False
    ids.append(user_id)
    return True


def toggle_vote(item: dict, user_id: str) -> bool:
    """Flip a user's vote on a solution or submission.

    The `votes` counter is kept alongside `voters` and moved by one in the
    same direction as the list.
    """
    voters = item.setdefault("voters", [])
    voted = toggle_member(voters, user_id)
    item["votes"] = item.get("votes", 0) + (1 if voted else -1)
    return voted
