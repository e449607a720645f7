"""Turn raw LLM ranking output into one RankingResult per requested lead."""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Sequence
from typing import Any

from leads_ranker.models import RankingResult

logger = logging.getLogger(__name__)

NO_PAYLOAD_REASONING = "Parse error: no structured payload found in AI response"
MISSING_LEAD_REASONING = "Failed to parse ranking from AI response"

_JSON_SPAN = re.compile(r"\{.*\}", re.DOTALL)


class _NotARank(ValueError):
    pass


def _coerce_rank(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise _NotARank(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise _NotARank(value) from None
    if math.isnan(number) or math.isinf(number):
        raise _NotARank(value)
    return int(round(number))


def _extract_rankings(response: str) -> list[Any] | None:
    match = _JSON_SPAN.search(response or "")
    if not match:
        return None
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("rankings"), list):
        return None
    return payload["rankings"]


def parse_ranking_response(response: str, lead_ids: Sequence[str]) -> list[RankingResult]:
    """
    Parse a ranking response for the given lead ids.

    Always returns exactly one result per id: entries matched from the response
    (in response order, first occurrence per id wins) followed by placeholder
    results for ids the response did not cover (in input order).
    """
    entries = _extract_rankings(response)
    if entries is None:
        logger.debug("No structured payload in ranking response")
        return [RankingResult(lead_id=lead_id, rank=None, reasoning=NO_PAYLOAD_REASONING) for lead_id in lead_ids]

    wanted = set(lead_ids)
    results: list[RankingResult] = []
    seen: set[str] = set()

    for item in entries:
        if not isinstance(item, dict):
            continue
        lead_id = item.get("leadId")
        if not isinstance(lead_id, str) or lead_id not in wanted or lead_id in seen:
            continue
        try:
            rank = _coerce_rank(item.get("rank"))
        except _NotARank:
            continue
        seen.add(lead_id)
        reasoning = item.get("reasoning")
        results.append(RankingResult(lead_id=lead_id, rank=rank, reasoning="" if reasoning is None else str(reasoning)))

    for lead_id in lead_ids:
        if lead_id not in seen:
            seen.add(lead_id)
            results.append(RankingResult(lead_id=lead_id, rank=None, reasoning=MISSING_LEAD_REASONING))

    return results
