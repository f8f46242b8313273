import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from supabase import Client
from app.modules.dashboard.schemas import (
    DashboardSummary, DashboardKPIs, MemberKPIs, GroupKPIs, TransactionKPIs, FinanceKPIs,
    RecentActivity, AttentionItems, DashboardStats
)
from app.config import settings
from app.core.errors import AppError, ValidationError
from app.database.query import run_query, call_rpc
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

STATS_ERROR_MESSAGE = "Failed to load dashboard statistics."


def empty_stats(error: Optional[str] = None) -> DashboardStats:
    return DashboardStats(reconciliation_status="Pending", error=error)


def _sum(rows: Optional[List[Dict[str, Any]]], column: str) -> float:
    return sum(float(row.get(column) or 0) for row in rows or [])


def build_kpis(summary: DashboardSummary) -> DashboardKPIs:
    # new_30d and the 7 day changes need history the summary RPC does not return
    return DashboardKPIs(
        members=MemberKPIs(total=summary.total_members, active=summary.active_members),
        groups=GroupKPIs(total=summary.total_groups, active=summary.active_groups),
        transactions=TransactionKPIs(
            pending=summary.pending_transactions,
            unallocated=summary.unallocated_count,
            today_volume=summary.today_deposits + summary.today_withdrawals,
        ),
        finances=FinanceKPIs(total_savings=summary.total_savings, total_loans=summary.total_loans),
    )


class DashboardService:
    def __init__(self, supabase: Client, clock: Callable[[], float] = time.monotonic):
        self.supabase = supabase
        self._clock = clock

    def get_summary(self, institution_id: Optional[str], days: int = 7) -> DashboardSummary:
        """Aggregates from the get_dashboard_summary RPC, missing fields as 0"""
        started = self._clock()
        result = call_rpc(self.supabase, "get_dashboard_summary", {
            "p_institution_id": institution_id or None,
            "p_days": days,
        }, "DashboardService.get_summary")
        elapsed = self._clock() - started
        if elapsed > settings.slow_query_seconds:
            logger.warning(f"Slow dashboard summary query: {elapsed * 1000:.0f}ms")

        data = result.data or {}
        if isinstance(data, list):
            data = data[0] if data else {}
        return DashboardSummary(**{
            field: data.get(field) if data.get(field) is not None else 0
            for field in DashboardSummary.model_fields
        })

    def get_kpis(self, institution_id: Optional[str]) -> DashboardKPIs:
        return build_kpis(self.get_summary(institution_id))

    def get_recent_activity(self, institution_id: str, limit: int = 10) -> List[RecentActivity]:
        if not institution_id:
            raise ValidationError("Institution ID is required")
        result = run_query(
            self.supabase.table("transactions")
            .select("id, type, amount, currency, occurred_at, payer_name")
            .eq("institution_id", institution_id)
            .order("occurred_at", desc=True)
            .limit(limit),
            "DashboardService.get_recent_activity",
            retry=True,
        )
        activity = []
        for txn in result.data or []:
            amount = txn.get("amount")
            currency = txn.get("currency") or settings.default_currency
            activity.append(RecentActivity(
                id=txn["id"],
                type="withdrawal" if (txn.get("type") or "").lower() == "withdrawal" else "deposit",
                description=f"{txn.get('type')} of {float(amount or 0):,.0f} {currency}",
                amount=amount,
                timestamp=txn.get("occurred_at"),
                actor_name=txn.get("payer_name"),
            ))
        return activity

    def _count_transactions(self, institution_id: str, allocation_status: str) -> int:
        result = run_query(
            self.supabase.table("transactions")
            .select("id", count="exact", head=True)
            .eq("institution_id", institution_id)
            .eq("allocation_status", allocation_status),
            f"DashboardService.count_{allocation_status}",
        )
        return result.count or 0

    def get_attention_items(self, institution_id: str) -> AttentionItems:
        if not institution_id:
            raise ValidationError("Institution ID is required")
        with ThreadPoolExecutor(max_workers=2) as pool:
            unallocated = pool.submit(self._count_transactions, institution_id, "unallocated")
            flagged = pool.submit(self._count_transactions, institution_id, "flagged")
            return AttentionItems(
                unallocated_transactions=unallocated.result(),
                flagged_transactions=flagged.result(),
            )

    def _stats_queries(self, institution_id: str, days: int) -> Dict[str, Any]:
        table = self.supabase.table
        now = datetime.now(timezone.utc)
        since = (now - timedelta(days=days)).isoformat()
        today = now.date().isoformat()
        return {
            "total_members": table("members").select("id", count="exact", head=True)
            .eq("institution_id", institution_id),
            "active_members": table("members").select("id", count="exact", head=True)
            .eq("institution_id", institution_id).eq("status", "ACTIVE"),
            "active_groups": table("groups").select("id", count="exact", head=True)
            .eq("institution_id", institution_id).eq("status", "ACTIVE"),
            "group_funds": table("groups").select("fund_balance")
            .eq("institution_id", institution_id),
            "member_savings": table("members").select("savings_balance")
            .eq("institution_id", institution_id),
            "outstanding_loans": table("loans").select("outstanding_balance")
            .eq("institution_id", institution_id).in_("status", ["ACTIVE", "OVERDUE"]),
            "period_deposits": table("transactions").select("amount")
            .eq("institution_id", institution_id).in_("type", ["DEPOSIT", "CONTRIBUTION"])
            .eq("status", "COMPLETED").gte("occurred_at", since),
            "unallocated": table("transactions").select("id", count="exact", head=True)
            .eq("institution_id", institution_id).eq("allocation_status", "unallocated"),
            "today_deposits": table("transactions").select("amount")
            .eq("institution_id", institution_id).in_("type", ["DEPOSIT", "CONTRIBUTION"])
            .eq("status", "COMPLETED").gte("occurred_at", today),
        }

    def get_stats(self, institution_id: Optional[str], days: int = 7) -> DashboardStats:
        """
        KPI figures for the dashboard cards.

        The queries run in parallel; if any of them fails the default stats are
        returned with an error message instead of partial figures.
        """
        if not institution_id:
            return empty_stats()
        queries = self._stats_queries(institution_id, days)
        try:
            with ThreadPoolExecutor(max_workers=len(queries)) as pool:
                futures = {
                    name: pool.submit(run_query, builder, f"DashboardService.stats.{name}")
                    for name, builder in queries.items()
                }
                results = {name: future.result() for name, future in futures.items()}
        except AppError as e:
            logger.error(f"Error loading dashboard stats for {institution_id}: {e.message}")
            return empty_stats(STATS_ERROR_MESSAGE)

        unallocated = results["unallocated"].count or 0
        return DashboardStats(
            total_members=results["total_members"].count or 0,
            active_members=results["active_members"].count or 0,
            active_groups=results["active_groups"].count or 0,
            total_group_funds=_sum(results["group_funds"].data, "fund_balance"),
            total_savings=_sum(results["member_savings"].data, "savings_balance"),
            outstanding_loans=_sum(results["outstanding_loans"].data, "outstanding_balance"),
            period_deposits=_sum(results["period_deposits"].data, "amount"),
            unallocated_count=unallocated,
            daily_deposits=_sum(results["today_deposits"].data, "amount"),
            reconciliation_status="Issues" if unallocated > 0 else "Balanced",
        )
