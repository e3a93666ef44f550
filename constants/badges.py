from dashboard_schemas import Badge

COMPLETION_BADGES = {
    10: Badge(id="first_10", name="Getting Started", description="10 tasks completed", icon="🎯"),
    50: Badge(id="half_century", name="Half Century", description="50 tasks completed", icon="🏆"),
    100: Badge(id="centurion", name="Task Master", description="100 tasks completed", icon="👑"),
}

def completion_badge(milestone: int) -> Badge:
    badge = COMPLETION_BADGES.get(milestone)
    if badge is not None:
        return badge
    return Badge(
        id=f"completed_{milestone}",
        name=f"{milestone} Tasks",
        description=f"{milestone} tasks completed",
        icon="✅",
    )

def quality_badge(max_revision_rate: float) -> Badge:
    return Badge(
        id="quality_master",
        name="Quality Master",
        description=f"Less than {max_revision_rate:g}% revision rate",
        icon="⭐",
    )
