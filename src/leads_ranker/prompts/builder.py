from collections.abc import Sequence

from leads_ranker.models import LeadForRanking
from leads_ranker.prompts.prompts import CROSSOVER_PROMPT, MUTATION_PROMPT, RANKING_RESPONSE_INSTRUCTIONS


def build_ranking_prompt(base_prompt: str, company_leads: Sequence[LeadForRanking]) -> str:
    """
    Build the ranking request for one company's leads.

    Company size/industry are taken from the first lead; callers group by company.
    """
    if not company_leads:
        raise ValueError("build_ranking_prompt requires at least one lead")

    company = company_leads[0]
    leads_info = "\n\n".join(
        f"{idx}. ID: {lead.id}\n   Name: {lead.first_name} {lead.last_name}\n   Title: {lead.job_title}"
        for idx, lead in enumerate(company_leads, 1)
    )

    return (
        f"{base_prompt}\n\n"
        "---\n\n"
        f"Now rank the following leads from {company.company_name} "
        f"({company.employee_range or 'Unknown size'} employees, Industry: {company.industry or 'Unknown'}):\n\n"
        f"{leads_info}\n\n"
        f"{RANKING_RESPONSE_INSTRUCTIONS}"
    )


def build_mutation_prompt(parent: str, issues: Sequence[str]) -> str:
    return MUTATION_PROMPT.format(parent=parent, issues="\n".join(issues))


def build_crossover_prompt(parent_a: str, parent_b: str) -> str:
    return CROSSOVER_PROMPT.format(parent_a=parent_a, parent_b=parent_b)
