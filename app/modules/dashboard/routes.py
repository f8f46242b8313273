from fastapi import APIRouter, Depends, Query
from app.database.supabase_client import get_supabase
from app.modules.dashboard.schemas import (
    DashboardSummary, DashboardKPIs, DashboardOverview, DashboardStats, RecentActivity, AttentionItems
)
from app.modules.dashboard.service import DashboardService, build_kpis
from app.modules.auth.schemas import CurrentUser
from app.core.dependencies import require_permission, resolve_institution
from app.core.query_cache import QueryCache, get_query_cache, query_keys
from supabase import Client
from typing import List, Optional

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


def get_dashboard_service(supabase: Client = Depends(get_supabase)) -> DashboardService:
    return DashboardService(supabase)


@router.get("/summary", response_model=DashboardSummary)
def get_summary(
    institution_id: Optional[str] = None,
    days: int = Query(7, ge=1, le=365),
    user: CurrentUser = Depends(require_permission("dashboard:read")),
    service: DashboardService = Depends(get_dashboard_service),
    cache: QueryCache = Depends(get_query_cache)
):
    scope = resolve_institution(user, institution_id)
    return cache.fetch(query_keys.dashboard(scope, "summary", days), lambda: service.get_summary(scope, days))


@router.get("/kpis", response_model=DashboardKPIs)
def get_kpis(
    institution_id: Optional[str] = None,
    user: CurrentUser = Depends(require_permission("dashboard:read")),
    service: DashboardService = Depends(get_dashboard_service),
    cache: QueryCache = Depends(get_query_cache)
):
    scope = resolve_institution(user, institution_id)
    summary = cache.fetch(query_keys.dashboard(scope, "summary", 7), lambda: service.get_summary(scope))
    return build_kpis(summary)


@router.get("/overview", response_model=DashboardOverview)
def get_overview(
    institution_id: Optional[str] = None,
    user: CurrentUser = Depends(require_permission("dashboard:read")),
    service: DashboardService = Depends(get_dashboard_service),
    cache: QueryCache = Depends(get_query_cache)
):
    """Summary, KPIs, recent activity and attention items in one call"""
    scope = resolve_institution(user, institution_id) or user.institution_id

    def load():
        summary = service.get_summary(scope)
        return DashboardOverview(
            summary=summary,
            kpis=build_kpis(summary),
            recent_activity=service.get_recent_activity(scope),
            attention=service.get_attention_items(scope),
        )

    return cache.fetch(query_keys.dashboard(scope, "overview"), load)


@router.get("/activity", response_model=List[RecentActivity])
def get_recent_activity(
    institution_id: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    user: CurrentUser = Depends(require_permission("dashboard:read")),
    service: DashboardService = Depends(get_dashboard_service)
):
    return service.get_recent_activity(resolve_institution(user, institution_id) or user.institution_id, limit)


@router.get("/attention", response_model=AttentionItems)
def get_attention_items(
    institution_id: Optional[str] = None,
    user: CurrentUser = Depends(require_permission("dashboard:read")),
    service: DashboardService = Depends(get_dashboard_service)
):
    return service.get_attention_items(resolve_institution(user, institution_id) or user.institution_id)


@router.get("/stats", response_model=DashboardStats)
def get_stats(
    institution_id: Optional[str] = None,
    days: int = Query(7, ge=1, le=365),
    user: CurrentUser = Depends(require_permission("dashboard:read")),
    service: DashboardService = Depends(get_dashboard_service),
    cache: QueryCache = Depends(get_query_cache)
):
    """Dashboard card figures; falls back to default values when a query fails"""
    scope = resolve_institution(user, institution_id) or user.institution_id
    stats = cache.get(query_keys.dashboard(scope, "stats", days))
    if stats is None:
        stats = service.get_stats(scope, days)
        if stats.error is None:
            cache.set(query_keys.dashboard(scope, "stats", days), stats)
    return stats
