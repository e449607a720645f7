"""CSV parsing for lead imports and the labelled eval set, plus top-leads export."""

from __future__ import annotations

import csv
import io
from collections.abc import Sequence

from leads_ranker.models import EvalLead, LeadImportRow, RankedLeadView

LEAD_COLUMNS = (
    "account_name",
    "lead_first_name",
    "lead_last_name",
    "lead_job_title",
    "account_domain",
    "account_employee_range",
    "account_industry",
)

EXPORT_COLUMNS = ("company", "first_name", "last_name", "job_title", "rank", "reasoning", "employee_range", "industry", "domain")


def _optional(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


def parse_leads_csv(content: str) -> list[LeadImportRow]:
    """Parse an import CSV keyed by the `LEAD_COLUMNS` header names."""
    reader = csv.DictReader(io.StringIO(content.strip()))
    if reader.fieldnames:
        reader.fieldnames = [name.strip() for name in reader.fieldnames]
    return [
        LeadImportRow(
            account_name=(row.get("account_name") or "").strip(),
            first_name=(row.get("lead_first_name") or "").strip(),
            last_name=(row.get("lead_last_name") or "").strip(),
            job_title=(row.get("lead_job_title") or "").strip(),
            account_domain=_optional(row.get("account_domain")),
            employee_range=_optional(row.get("account_employee_range")),
            industry=_optional(row.get("account_industry")),
        )
        for row in reader
    ]


def _parse_rank(raw: str) -> int | None:
    raw = raw.strip()
    if raw in ("", "-"):
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def parse_eval_set(content: str) -> list[EvalLead]:
    """
    Parse the eval set.

    Columns are positional (Full Name, Title, Company, LI, Employee Range, Rank);
    the header row is skipped, short rows are dropped and extra columns ignored.
    A rank of "-" or blank marks the lead as irrelevant.
    """
    rows = list(csv.reader(io.StringIO(content.strip())))
    leads: list[EvalLead] = []
    for values in rows[1:]:
        if not any(v.strip() for v in values) or len(values) < 6:
            continue
        values = [v.strip() for v in values]
        leads.append(
            EvalLead(
                full_name=values[0],
                title=values[1],
                company=values[2],
                linkedin_url=values[3],
                employee_range=values[4],
                expected_rank=_parse_rank(values[5]),
            )
        )
    return leads


def export_top_leads_csv(leads: Sequence[RankedLeadView]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for lead in leads:
        writer.writerow(
            {
                "company": lead.company_name,
                "first_name": lead.first_name,
                "last_name": lead.last_name,
                "job_title": lead.job_title,
                "rank": "" if lead.rank is None else lead.rank,
                "reasoning": lead.reasoning or "",
                "employee_range": lead.employee_range or "",
                "industry": lead.industry or "",
                "domain": lead.account_domain or "",
            }
        )
    return buffer.getvalue()
