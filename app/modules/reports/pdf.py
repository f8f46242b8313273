"""
PDF rendering for member statements and group contribution reports (fpdf2).
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from fpdf import FPDF, XPos, YPos
from app.modules.messaging.generators import format_currency, format_date
from app.modules.messaging.schemas import MemberStatement

NAVY = (30, 60, 100)
TEAL = (0, 150, 150)
LIGHT_GREY = (240, 240, 240)


def _latin1(text: Any) -> str:
    # Core PDF fonts only cover latin-1
    return str(text if text is not None else "").encode("latin-1", "replace").decode("latin-1")


class ReportPDF(FPDF):
    def __init__(self, title: str, subtitle: str, footer_text: str = "Ibimina Admin"):
        super().__init__(orientation="P", unit="mm", format="A4")
        self.title_text = title
        self.subtitle_text = subtitle
        self.footer_text = footer_text
        self.set_auto_page_break(auto=True, margin=15)

    def header(self):
        self.set_text_color(*NAVY)
        self.set_font("Helvetica", "B", 16)
        self.cell(0, 10, _latin1(self.title_text), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.set_text_color(*TEAL)
        self.set_font("Helvetica", "B", 12)
        self.cell(0, 8, _latin1(self.subtitle_text), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.ln(5)
        self.set_text_color(0, 0, 0)

    def footer(self):
        self.set_y(-15)
        self.set_font("Helvetica", "I", 8)
        self.set_text_color(128, 128, 128)
        self.cell(0, 10, _latin1(f"Page {self.page_no()} - {self.footer_text}"), align="C")

    def section_title(self, label: str):
        self.set_fill_color(*LIGHT_GREY)
        self.set_text_color(*TEAL)
        self.set_font("Helvetica", "B", 12)
        self.cell(0, 8, _latin1(f"  {label}"), fill=True, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.ln(2)
        self.set_text_color(0, 0, 0)

    def key_values(self, rows: Iterable[Tuple[str, Any]]):
        self.set_font("Helvetica", "", 10)
        for label, value in rows:
            self.cell(60, 7, _latin1(label))
            self.cell(0, 7, _latin1(value), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.ln(4)

    def table(self, headers: Sequence[str], widths: Sequence[float], rows: Iterable[Sequence[Any]],
              aligns: Optional[Sequence[str]] = None):
        aligns = aligns or ["L"] * len(headers)
        self.set_fill_color(*NAVY)
        self.set_text_color(255, 255, 255)
        self.set_font("Helvetica", "B", 9)
        for header, width, align in zip(headers, widths, aligns):
            self.cell(width, 7, _latin1(header), border=1, align=align, fill=True)
        self.ln()

        self.set_text_color(0, 0, 0)
        self.set_font("Helvetica", "", 9)
        self.set_fill_color(*LIGHT_GREY)
        fill = False
        for row in rows:
            for value, width, align in zip(row, widths, aligns):
                self.cell(width, 6, _latin1(value), border=1, align=align, fill=fill)
            self.ln()
            fill = not fill  # stripe
        self.ln(4)

    def to_bytes(self) -> bytes:
        return bytes(self.output())


def render_statement_pdf(statement: MemberStatement) -> bytes:
    currency = statement.currency
    pdf = ReportPDF(
        title="Savings Statement",
        subtitle=f"{statement.member.full_name} | {format_date(statement.generated_at)}",
    )
    pdf.add_page()

    pdf.section_title("Member")
    pdf.key_values([
        ("Name", statement.member.full_name),
        ("Phone", statement.member.phone or "-"),
        ("National ID", statement.member.national_id or "-"),
    ])

    savings = statement.savings
    pdf.section_title("Savings Summary")
    pdf.key_values([
        ("Current Balance", format_currency(savings.current_balance, currency)),
        ("Total Contributions", format_currency(savings.total_contributions, currency)),
        ("Contribution Count", savings.contribution_count),
        ("Last Contribution", format_date(savings.last_contribution_date) or "-"),
    ])

    loans = statement.loans
    if loans.loans_count > 0:
        pdf.section_title("Loan Summary")
        pdf.key_values([
            ("Active Loan Balance", format_currency(loans.active_loan_balance, currency)),
            ("Total Loans Taken", format_currency(loans.total_loans_taken, currency)),
            ("Total Repaid", format_currency(loans.total_loans_repaid, currency)),
        ])

    if statement.groups:
        pdf.section_title("Group Memberships")
        pdf.table(
            ["Group", "Role", "Frequency", "Expected"],
            [70, 35, 35, 50],
            [(g.name[:35], g.role or "MEMBER", g.contribution_frequency,
              format_currency(g.expected_amount, currency)) for g in statement.groups],
            ["L", "C", "C", "R"],
        )

    pdf.section_title("Recent Transactions")
    pdf.table(
        ["Date", "Type", "Group", "Status", "Amount"],
        [28, 40, 52, 30, 40],
        [(format_date(t.date), t.type or "", (t.group_name or "")[:26], t.status or "",
          format_currency(t.amount, currency)) for t in statement.recent_transactions],
        ["C", "L", "L", "C", "R"],
    )
    return pdf.to_bytes()


def render_group_report_pdf(report: Dict[str, Any]) -> bytes:
    currency = report.get("currency") or "RWF"
    period = f"{format_date(report.get('period_start')) or 'Start'} - {format_date(report.get('period_end')) or 'Today'}"
    pdf = ReportPDF(
        title=report.get("group_name") or "Group Report",
        subtitle=f"{str(report.get('report_type', '')).title()} Contribution Report | {period}",
    )
    pdf.add_page()

    pdf.section_title("Summary")
    pdf.key_values([
        ("Period Contributions", format_currency(report.get("period_total"), currency)),
        ("Overall Contributions", format_currency(report.get("overall_total"), currency)),
        ("Members", report.get("member_count", 0)),
        ("Generated", format_date(datetime.now(timezone.utc))),
    ])

    contributions: List[Dict[str, Any]] = report.get("member_contributions") or []
    pdf.section_title("Member Contributions")
    pdf.table(
        ["Member", "Phone", "Period", "Overall"],
        [70, 40, 40, 40],
        [(str(mc.get("member_name") or "")[:35], mc.get("phone") or "",
          format_currency(mc.get("period_total"), currency),
          format_currency(mc.get("overall_total"), currency)) for mc in contributions],
        ["L", "L", "R", "R"],
    )
    return pdf.to_bytes()
