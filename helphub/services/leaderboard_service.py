from helphub.models.user import User
from helphub.utils.permissions import VOLUNTEER


def get_leaderboard(limit=20):
    users = (
        User.query.filter_by(role=VOLUNTEER, is_blocked=False)
        .order_by(User.points.desc(), User.requests_completed.desc())
        .limit(limit)
        .all()
    )
    leaderboard = []
    rank = 1
    for user in users:
        leaderboard.append({
            "rank": rank,
            "volunteer": user.summary(),
            "points": user.points,
            "requests_completed": user.requests_completed,
            "average_rating": user.average_rating,
            "badges": user.badge_names,
        })
        rank += 1
    return leaderboard
