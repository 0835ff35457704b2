# switchboard_cli/core_api/counts_api_service.py
"""
Per-panel thread counts without loading any thread data.

`estimate_counts` issues at most two Gmail lookups per call, however many
panels there are:

1. Panels that show the whole inbox (filter panels without rules) all share
   one lookup: the INBOX label's exact statistics, or, while a search is
   active, a single estimate for the search on its own.
2. Every other panel (filter panels with rules, and the catch-all) has its
   query compiled and the whole set is estimated in one batched call.

Results are put back in the caller's panel order.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from switchboard_cli.core_api import gmail_api_service
from switchboard_cli.core_api.panels_api_service import (
    compile_panel_query,
    combine_with_search,
)
from switchboard_cli.features.panel_management.models import CountResult, PanelConfig
from .exceptions import GmailApiError, InvalidParameterError

logger = logging.getLogger(__name__)

PanelInput = Union[PanelConfig, Dict[str, Any]]


def categorize_panels(panels: Sequence[PanelConfig]) -> List[bool]:
    """Returns has_rules for every panel, in input order."""
    return [len(panel.rules) > 0 for panel in panels]


def validate_panels(panels: Optional[Sequence[PanelInput]]) -> List[PanelConfig]:
    """Parses and checks request panels. Raises InvalidParameterError, never touches Gmail."""
    if not isinstance(panels, (list, tuple)):
        raise InvalidParameterError("panels array required")
    if len(panels) == 0:
        raise InvalidParameterError("panels array required")

    parsed: List[PanelConfig] = []
    for i, panel in enumerate(panels):
        if isinstance(panel, PanelConfig):
            parsed.append(panel)
            continue
        try:
            parsed.append(PanelConfig.model_validate(panel))
        except ValidationError as e:
            logger.warning(f"Invalid panel #{i+1}: {e.errors()}")
            raise InvalidParameterError(f"Invalid panel #{i+1}: {e}", original_exception=e)

    catch_all_count = sum(1 for p in parsed if p.is_catch_all)
    if catch_all_count > 1:
        raise InvalidParameterError(
            f"At most one catch_all panel is allowed, got {catch_all_count}."
        )
    return parsed


def estimate_counts(
    panels: Optional[Sequence[PanelInput]],
    search_query: Optional[str] = None,
    service: Any = None,
) -> List[CountResult]:
    """
    Counts threads per panel.

    Args:
        panels: Panel configurations (models or plain dicts), in display order.
        search_query: The user's active search, if any. Blank means none.
        service: Authenticated Gmail API client.

    Returns:
        One CountResult per panel, same length and order as `panels`.

    Raises:
        InvalidParameterError: empty or malformed panels; raised before any Gmail call.
        RuleCompilationError: a rule pattern had no searchable text.
        SessionExpiredError / GmailApiError: a Gmail lookup failed. Nothing partial is returned.
    """
    parsed_panels = validate_panels(panels)
    search = (search_query or "").strip()

    has_rules = categorize_panels(parsed_panels)
    # With no rule-bearing sibling there is nothing to subtract, so the
    # catch-all shows the same thing as a plain no-rules panel.
    catch_all_in_batch = any(has_rules)
    shares_inbox_view = [
        not has_rules[i] and not (panel.is_catch_all and catch_all_in_batch)
        for i, panel in enumerate(parsed_panels)
    ]

    # Compile everything up front so a bad rule fails before any Gmail call.
    filter_queries: Dict[int, str] = {
        i: compile_panel_query(panel)
        for i, panel in enumerate(parsed_panels)
        if has_rules[i]
    }
    batch_indexes: List[int] = []
    batch_queries: List[str] = []
    for i, panel in enumerate(parsed_panels):
        if shares_inbox_view[i]:
            continue
        if panel.is_catch_all:
            panel_query = compile_panel_query(
                panel, negate_against=[filter_queries[j] for j in sorted(filter_queries)]
            )
        else:
            panel_query = filter_queries[i]
        batch_indexes.append(i)
        batch_queries.append(combine_with_search(panel_query, search))

    shared_result: Optional[CountResult] = None
    if any(shares_inbox_view):
        if search:
            logger.debug(f"Estimating shared inbox view for search '{search}'.")
            estimate = gmail_api_service.fetch_estimated_counts(service, [search])[0]
            shared_result = CountResult(is_estimate=True, **estimate)
        else:
            logger.debug("Fetching exact inbox counts for the shared inbox view.")
            exact = gmail_api_service.fetch_exact_folder_counts(service)
            shared_result = CountResult(is_estimate=False, **exact)

    batch_results: Dict[int, CountResult] = {}
    if batch_queries:
        logger.debug(f"Estimating {len(batch_queries)} panel queries in one batch.")
        estimates = gmail_api_service.fetch_estimated_counts(service, batch_queries)
        if len(estimates) != len(batch_queries):
            raise GmailApiError(
                f"Expected {len(batch_queries)} estimates, got {len(estimates)}."
            )
        for index, estimate in zip(batch_indexes, estimates):
            batch_results[index] = CountResult(is_estimate=True, **estimate)

    counts = [
        shared_result if shares_inbox_view[i] else batch_results[i]
        for i in range(len(parsed_panels))
    ]
    logger.info(
        f"Counted {len(counts)} panels ({sum(shares_inbox_view)} shared, {len(batch_queries)} estimated)."
    )
    return counts
