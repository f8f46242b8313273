"""
WhatsApp message bodies for member statements and group reports.

WhatsApp renders *text* as bold, which the section headers rely on.
"""

from datetime import date, datetime
from typing import Optional, Union
from app.modules.messaging.schemas import MemberStatement

DIVIDER = "━━━━━━━━━━━━━━━━━━━━"


def format_currency(amount: Optional[float], currency: str = "RWF") -> str:
    """RWF 1,250,000 style amounts with no decimals"""
    return f"{currency} {round(float(amount or 0)):,}"


def format_date(value: Union[str, date, datetime, None]) -> str:
    if value is None or value == "":
        return ""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value.strftime("%d/%m/%Y")


def generate_statement_message(statement: MemberStatement, today: Optional[date] = None) -> str:
    member, savings, loans = statement.member, statement.savings, statement.loans
    currency = statement.currency
    lines = [
        "📊 *SAVINGS STATEMENT*",
        "",
        f"*Member:* {member.full_name}",
        f"*Phone:* {member.phone or ''}",
        f"*Generated:* {format_date(today or date.today())}",
        "",
        DIVIDER,
        "💰 *SAVINGS SUMMARY*",
        DIVIDER,
        f"*Current Balance:* {format_currency(savings.current_balance, currency)}",
        f"*Total Contributions:* {format_currency(savings.total_contributions, currency)}",
        f"*Contribution Count:* {savings.contribution_count}",
    ]

    if savings.last_contribution_date:
        lines.append(
            f"*Last Contribution:* {format_currency(savings.last_contribution_amount, currency)} "
            f"on {format_date(savings.last_contribution_date)}"
        )
    if savings.arrears > 0:
        lines.append(f"⚠️ *Arrears:* {format_currency(savings.arrears, currency)}")

    if loans.has_active_loan or loans.loans_count > 0:
        lines += ["", DIVIDER, "🏦 *LOAN SUMMARY*", DIVIDER]
        if loans.has_active_loan:
            lines.append(f"*Active Loan Balance:* {format_currency(loans.active_loan_balance, currency)}")
        else:
            lines.append("✅ No active loans")
        lines.append(f"*Total Loans Taken:* {format_currency(loans.total_loans_taken, currency)}")
        lines.append(f"*Total Repaid:* {format_currency(loans.total_loans_repaid, currency)}")

    if statement.groups:
        lines += ["", DIVIDER, "👥 *GROUP MEMBERSHIPS*", DIVIDER]
        for group in statement.groups:
            lines.append(f"• {group.name} ({group.role or 'MEMBER'})")
            lines.append(f"  Expected: {format_currency(group.expected_amount, currency)} {group.contribution_frequency}")

    lines += [
        "",
        DIVIDER,
        "Thank you for being a valued member!",
        "For questions, contact your SACCO office.",
    ]
    return "\n".join(lines)


def generate_group_report_message(
    group_name: str,
    leader_name: str,
    report_type: str,
    period_start: Optional[str],
    period_end: Optional[str],
    total_contributions: float,
    member_count: int,
    currency: str = "RWF",
) -> str:
    period = f"{format_date(period_start) or 'Start'} - {format_date(period_end) or 'Today'}"
    lines = [
        f"📊 *GROUP {report_type.upper()} REPORT*",
        "",
        f"*Group:* {group_name}",
        f"*Leader:* {leader_name}",
        f"*Period:* {period}",
        "",
        DIVIDER,
        "💰 *SUMMARY*",
        DIVIDER,
        f"*Total Contributions:* {format_currency(total_contributions, currency)}",
        f"*Active Members:* {member_count}",
        "",
        "📎 *Detailed report attached as PDF*",
        "",
        DIVIDER,
        "For questions, contact administration.",
    ]
    return "\n".join(lines)
