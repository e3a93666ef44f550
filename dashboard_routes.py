import logging
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from database import get_db
from models import User
from dashboard_schemas import ActivityItem, TaskCounts, UserStatistics
from services.activity import build_recent_activity
from services.data_source import SQLAlchemyTaskDataSource, DataSourceUnavailableError
from services.statistics import StatisticsAggregator
from services.statistics_cache import StatisticsCache, DashboardCountsStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/dashboard",
    tags=["dashboard"]
)

def get_statistics_cache(request: Request) -> StatisticsCache:
    return request.app.state.statistics_cache

def get_dashboard_counts_store(request: Request) -> DashboardCountsStore:
    return request.app.state.dashboard_counts

def get_statistics_aggregator(
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache)
) -> StatisticsAggregator:
    return StatisticsAggregator(SQLAlchemyTaskDataSource(db), cache)

async def load_user_statistics(
    user_id: int,
    db: Session,
    aggregator: StatisticsAggregator,
    dashboard_counts: DashboardCountsStore
) -> UserStatistics:
    if not db.query(User).filter(User.id == user_id).first():
        raise HTTPException(status_code=404, detail="User not found")

    try:
        statistics = await aggregator.get_user_statistics(user_id)
    except DataSourceUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Statistics are temporarily unavailable, please retry: {str(e)}"
        )
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Error retrieving dashboard statistics: {str(e)}"
        )

    # Publish what the dashboard shows so workspace views can cross-check it
    all_time = statistics.task_metrics.all_time
    dashboard_counts.publish(user_id, TaskCounts(
        active=all_time.active,
        pending_review=all_time.pending_review,
        completed=all_time.completed,
        remaining=all_time.remaining,
        total=all_time.total
    ))
    return statistics

@router.get("/{user_id}/stats", response_model=UserStatistics)
async def get_user_statistics(
    user_id: int,
    db: Session = Depends(get_db),
    aggregator: StatisticsAggregator = Depends(get_statistics_aggregator),
    dashboard_counts: DashboardCountsStore = Depends(get_dashboard_counts_store)
):
    """
    Get the user's dashboard statistics:
    - Task counts and completion rate (all time, this week, this month)
    - 30-day created/completed trend
    - Efficiency metrics and productivity score
    - Workspace participation
    - Badges and streaks
    """
    return await load_user_statistics(user_id, db, aggregator, dashboard_counts)

@router.get("/{user_id}/activity", response_model=List[ActivityItem])
async def get_recent_activity(
    user_id: int,
    db: Session = Depends(get_db),
    aggregator: StatisticsAggregator = Depends(get_statistics_aggregator),
    dashboard_counts: DashboardCountsStore = Depends(get_dashboard_counts_store)
):
    statistics = await load_user_statistics(user_id, db, aggregator, dashboard_counts)
    return build_recent_activity(statistics)

@router.delete("/cache")
def clear_statistics_cache(cache: StatisticsCache = Depends(get_statistics_cache)):
    cache.clear()
    logger.info("Statistics cache cleared")
    return {"message": "Statistics cache cleared"}
