from pydantic import BaseModel
from typing import Optional, List


class DashboardSummary(BaseModel):
    total_members: int = 0
    active_members: int = 0
    total_groups: int = 0
    active_groups: int = 0
    total_savings: float = 0
    total_loans: float = 0
    pending_transactions: int = 0
    today_deposits: float = 0
    today_withdrawals: float = 0
    unallocated_count: int = 0


class MemberKPIs(BaseModel):
    total: int = 0
    active: int = 0
    new_30d: int = 0


class GroupKPIs(BaseModel):
    total: int = 0
    active: int = 0


class TransactionKPIs(BaseModel):
    pending: int = 0
    unallocated: int = 0
    today_count: int = 0
    today_volume: float = 0


class FinanceKPIs(BaseModel):
    total_savings: float = 0
    total_loans: float = 0
    savings_change_7d: float = 0
    loans_change_7d: float = 0


class DashboardKPIs(BaseModel):
    members: MemberKPIs
    groups: GroupKPIs
    transactions: TransactionKPIs
    finances: FinanceKPIs


class RecentActivity(BaseModel):
    id: str
    type: str
    description: str
    amount: Optional[float] = None
    timestamp: Optional[str] = None
    actor_name: Optional[str] = None


class AttentionItems(BaseModel):
    unallocated_transactions: int = 0
    pending_approvals: int = 0
    overdue_loans: int = 0
    flagged_transactions: int = 0


class DashboardOverview(BaseModel):
    summary: DashboardSummary
    kpis: DashboardKPIs
    recent_activity: List[RecentActivity]
    attention: AttentionItems


class DashboardStats(BaseModel):
    total_members: int = 0
    active_members: int = 0
    active_groups: int = 0
    total_group_funds: float = 0
    total_savings: float = 0
    outstanding_loans: float = 0
    period_deposits: float = 0
    unallocated_count: int = 0
    daily_deposits: float = 0
    reconciliation_status: str = "Pending"
    error: Optional[str] = None
