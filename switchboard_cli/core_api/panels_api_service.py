# switchboard_cli/core_api/panels_api_service.py
import json
import logging
import re
from typing import List, Dict, Optional, Sequence
from pathlib import Path
from pydantic import ValidationError
from switchboard_cli.core import config as app_config

from switchboard_cli.features.panel_management.models import PanelConfig, PanelRule
from .exceptions import (
    PanelStorageError,
    InvalidParameterError,
    RuleCompilationError,
)

logger = logging.getLogger(__name__)
PANELS_FILE_PATH = Path(app_config.PANELS_FILE)


# --- Default Panels ---
def get_default_panels() -> List[PanelConfig]:
    """
    Panel layout for a new user: three empty filter panels showing the
    whole inbox, and a catch-all that will count whatever the user's
    future rules leave unclaimed.
    """
    return [
        PanelConfig(name="Primary"),
        PanelConfig(name="Social"),
        PanelConfig(name="Updates"),
        PanelConfig(name="Other", kind="catch_all"),
    ]


# --- Panel Storage (CRUD) ---
def load_panels() -> List[PanelConfig]:
    """Loads panels from the JSON panels file. Raises PanelStorageError on issues."""
    if not PANELS_FILE_PATH.exists():
        logger.info(
            f"Panels file not found at {PANELS_FILE_PATH}. Using default panels."
        )
        return get_default_panels()
    try:
        with open(PANELS_FILE_PATH, "r") as f:
            panels_data_from_file = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(
            f"Error decoding JSON from panels file {PANELS_FILE_PATH}: {e}",
            exc_info=True,
        )
        raise PanelStorageError(
            f"Invalid JSON in panels file: {PANELS_FILE_PATH}", original_exception=e
        )
    except OSError as e:
        logger.error(
            f"IOError reading panels file {PANELS_FILE_PATH}: {e}", exc_info=True
        )
        raise PanelStorageError(
            f"Could not read panels file: {PANELS_FILE_PATH}", original_exception=e
        )

    if not isinstance(panels_data_from_file, list):
        raise PanelStorageError(
            f"Panels file {PANELS_FILE_PATH} must contain a JSON list of panels."
        )

    valid_panels: List[PanelConfig] = []
    invalid_panel_count = 0
    for i, panel_dict in enumerate(panels_data_from_file):
        try:
            valid_panels.append(PanelConfig.model_validate(panel_dict))
        except ValidationError as e:
            invalid_panel_count += 1
            logger.warning(
                f"Skipping invalid panel #{i+1} due to validation error: {e.errors()} in panel data: {panel_dict}"
            )

    if invalid_panel_count > 0:
        logger.warning(
            f"Loaded {len(valid_panels)} valid panels and skipped {invalid_panel_count} invalid panels."
        )
    else:
        logger.info(
            f"Successfully loaded {len(valid_panels)} panels from {PANELS_FILE_PATH}."
        )
    return valid_panels


def save_panels(panels: List[PanelConfig]) -> None:
    """Saves the list of panels to the JSON panels file. Raises PanelStorageError on issues."""
    try:
        logger.debug(f"Attempting to save {len(panels)} panels to {PANELS_FILE_PATH}.")
        PANELS_FILE_PATH.parent.mkdir(parents=True, exist_ok=True)
        panels_data_to_save = [panel.model_dump(mode="json") for panel in panels]

        with open(PANELS_FILE_PATH, "w") as f:
            json.dump(panels_data_to_save, f, indent=2)
        logger.info(f"Successfully saved {len(panels)} panels to {PANELS_FILE_PATH}.")
    except OSError as e:
        logger.error(
            f"IOError saving panels file {PANELS_FILE_PATH}: {e}", exc_info=True
        )
        raise PanelStorageError(
            f"Could not write to panels file: {PANELS_FILE_PATH}", original_exception=e
        )


def add_panel(new_panel: PanelConfig, position: Optional[int] = None) -> PanelConfig:
    """Adds a panel (appended, or inserted at `position`) and saves."""
    if not isinstance(new_panel, PanelConfig):
        raise InvalidParameterError("Invalid panel object provided to add_panel.")

    panels = load_panels()
    for existing_panel in panels:
        if existing_panel.name.lower() == new_panel.name.lower():
            err_msg = f"A panel with the name '{new_panel.name}' already exists."
            logger.warning(err_msg)
            raise InvalidParameterError(err_msg)
    if new_panel.is_catch_all and any(p.is_catch_all for p in panels):
        err_msg = "Only one catch_all panel is allowed."
        logger.warning(err_msg)
        raise InvalidParameterError(err_msg)

    if position is None:
        panels.append(new_panel)
    else:
        panels.insert(position, new_panel)
    save_panels(panels)
    logger.info(f"Panel '{new_panel.name}' added ({len(new_panel.rules)} rules).")
    return new_panel


def delete_panel(panel_name: str) -> bool:
    """Deletes a panel by name (case-insensitive). Raises InvalidParameterError if not found."""
    if not panel_name:
        raise InvalidParameterError("Panel name must be provided for deletion.")
    panels = load_panels()

    remaining = [p for p in panels if p.name.lower() != panel_name.lower()]
    if len(remaining) == len(panels):
        logger.warning(f"Panel '{panel_name}' not found for deletion.")
        raise InvalidParameterError(f"Panel '{panel_name}' not found.")

    save_panels(remaining)
    logger.info(f"Panel '{panel_name}' deleted.")
    return True


def reset_panels() -> List[PanelConfig]:
    """Overwrites the panels file with the default layout."""
    defaults = get_default_panels()
    save_panels(defaults)
    return defaults


# --- Local Thread Matching ---
def rule_matches(rule: PanelRule, message_fields: Dict[str, str]) -> bool:
    """
    Tests one rule's pattern (case-insensitive regex) against the matching
    field of a message. An invalid regex is a non-match, so one bad rule
    doesn't break the rest of the panel.
    """
    target = message_fields.get(rule.field) or ""
    try:
        return re.search(rule.pattern, target, re.IGNORECASE) is not None
    except re.error as e:
        logger.warning(f"Invalid regex pattern '{rule.pattern}': {e}. Treating as no match.")
        return False


def thread_matches_panel(
    panel: PanelConfig,
    message_fields: Dict[str, str],
    siblings: Optional[Sequence[PanelConfig]] = None,
) -> bool:
    """
    Checks whether a thread (its header/body fields) belongs in a panel.

    Uses the same boolean semantics as `compile_panel_query`: any matching
    reject rule excludes the thread; otherwise it belongs when any accept
    rule matches, or when the panel has only reject rules. A filter panel
    without rules matches everything. A catch-all panel matches threads
    that none of its rule-bearing `siblings` claim.
    """
    if panel.is_catch_all:
        return not any(
            thread_matches_panel(sibling, message_fields)
            for sibling in (siblings or [])
            if sibling.has_rules
        )
    if not panel.has_rules:
        return True

    accepts = [r for r in panel.rules if r.action == "accept"]
    rejects = [r for r in panel.rules if r.action == "reject"]

    if any(rule_matches(r, message_fields) for r in rejects):
        return False
    if not accepts:
        return True
    return any(rule_matches(r, message_fields) for r in accepts)


def assign_panel(panels: Sequence[PanelConfig], message_fields: Dict[str, str]) -> int:
    """Returns the index of the first panel that takes the thread, or -1."""
    for i, panel in enumerate(panels):
        if thread_matches_panel(panel, message_fields, siblings=panels):
            return i
    return -1


# --- Gmail Query Compilation ---
_FIELD_OPERATORS: Dict[str, str] = {
    "from": "from:",
    "to": "to:",
    "cc": "cc:",
    "subject": "subject:",
    "body": "",  # Gmail has no body operator; a bare term searches the message text
}

_CLASS_ESCAPE_RE = re.compile(r"(?<!\\)\\[dDwWsSbB]")
_CHAR_CLASS_RE = re.compile(r"(?<!\\)\[[^\]]*(?<!\\)\]")
_LOOKAROUND_RE = re.compile(r"(?<!\\)\(\?<?[=!][^()]*(?<!\\)\)")
_QUANTIFIER_RE = re.compile(r"(?<!\\)\{\d*,?\d*\}")
_GROUP_RE = re.compile(r"(?<!\\)\(([^()]*)(?<!\\)\)")
_ALTERNATION_RE = re.compile(r"(?<!\\)\|")
_ANCHOR_RE = re.compile(r"(?<!\\)[\^$]")
_ESCAPE_RE = re.compile(r"\\(.)")
_REGEX_SYNTAX_RE = re.compile(r"[*+?{}\[\]]")
_GMAIL_RESERVED_RE = re.compile(r'[()"]')
_WORD_RE = re.compile(r"\w")


def _expand_alternatives(pattern: str) -> List[str]:
    """Expands (a|b) groups with their surrounding text, then splits top-level |."""
    group = _GROUP_RE.search(pattern)
    if group:
        prefix = pattern[: group.start()]
        suffix = pattern[group.end() :]
        body = group.group(1)
        if body.startswith("?:"):
            body = body[2:]
        expanded: List[str] = []
        for alt in _ALTERNATION_RE.split(body):
            expanded.extend(_expand_alternatives(prefix + alt + suffix))
        return expanded
    return _ALTERNATION_RE.split(pattern)


def _clean_regex_term(term: str) -> str:
    term = _ESCAPE_RE.sub(r"\1", term)  # \. -> .
    term = _REGEX_SYNTAX_RE.sub("", term)
    term = _GMAIL_RESERVED_RE.sub("", term)
    return term.strip()


def regex_to_gmail_terms(pattern: str) -> List[str]:
    """
    Converts a rule's regex pattern to literal Gmail search terms.

    - `@company\\.com` -> ['@company.com']
    - `@(twitter|facebook)\\.com` -> ['@twitter.com', '@facebook.com']
    - `newsletter|digest` -> ['newsletter', 'digest']
    - `invoice[0-9]+(?!draft)` -> ['invoice']

    Lookarounds, classes and quantifiers are stripped, so the result is an
    approximation suited to count estimates rather than exact filtering.
    Terms without a word character (what is left of `.*`, say) are
    dropped; duplicates keep their first position.
    """
    # Classes and lookarounds match no literal text of their own
    literal = _CLASS_ESCAPE_RE.sub("", pattern)
    literal = _CHAR_CLASS_RE.sub("", literal)
    literal = _LOOKAROUND_RE.sub("", literal)
    literal = _QUANTIFIER_RE.sub("", literal)
    without_anchors = _ANCHOR_RE.sub("", literal)
    terms: List[str] = []
    for alt in _expand_alternatives(without_anchors):
        cleaned = _clean_regex_term(alt)
        if cleaned and _WORD_RE.search(cleaned) and cleaned not in terms:
            terms.append(cleaned)
    return terms


def _term_to_atom(field: str, term: str) -> str:
    value = f'"{term}"' if any(ch.isspace() for ch in term) else term
    return f"{_FIELD_OPERATORS[field]}({value})"


def build_catch_all_query(negate_against: Sequence[str]) -> str:
    """
    Builds "none of these": the conjunction of the negation of every query,
    e.g. ['A', 'B'] -> '-(A) -(B)'. Blank queries claim nothing and are skipped.

    Raises InvalidParameterError when no query is left to negate, since an
    empty result would read as "no filtering" (the whole inbox).
    """
    negations = [f"-({q.strip()})" for q in negate_against if q and q.strip()]
    if not negations:
        raise InvalidParameterError(
            "Catch-all query needs at least one non-blank sibling query to negate."
        )
    return " ".join(negations)


def compile_panel_query(
    panel: PanelConfig, negate_against: Optional[Sequence[str]] = None
) -> str:
    """
    Translates a panel's rules to a single Gmail search query.

    Accept atoms are OR'd with Gmail's `{}` syntax; each reject atom is
    negated, which amounts to (OR of accepts) AND NOT (OR of rejects):

        {from:(@a.com) from:(@b.com)} -from:(noreply)

    A panel with only reject rules compiles to the negations alone, which
    Gmail reads as "everything except". A panel without rules compiles to
    "" (no filtering) unless `negate_against` is non-empty, in which case it
    is the catch-all query built by `build_catch_all_query` (which raises
    InvalidParameterError if every sibling query is blank).

    Raises RuleCompilationError when a rule's pattern has no literal text
    left to search for; the whole panel fails rather than silently widening.
    """
    if not panel.rules:
        if negate_against:
            return build_catch_all_query(negate_against)
        return ""

    accept_atoms: List[str] = []
    reject_atoms: List[str] = []
    for rule in panel.rules:
        terms = regex_to_gmail_terms(rule.pattern)
        if not terms:
            err_msg = (
                f"Rule '{rule.field} {rule.action} {rule.pattern}' in panel '{panel.name}' "
                "has no searchable text after translation."
            )
            logger.error(err_msg)
            raise RuleCompilationError(err_msg, panel_name=panel.name)

        target = accept_atoms if rule.action == "accept" else reject_atoms
        for term in terms:
            atom = _term_to_atom(rule.field, term)
            if atom not in target:
                target.append(atom)

    parts: List[str] = []
    if accept_atoms:
        # A single atom doesn't need {} wrapping
        parts.append(
            accept_atoms[0] if len(accept_atoms) == 1 else "{" + " ".join(accept_atoms) + "}"
        )
    parts.extend(f"-{atom}" for atom in reject_atoms)

    query = " ".join(parts)
    logger.debug(f"Compiled panel '{panel.name}' to Gmail query: {query}")
    return query


def combine_with_search(panel_query: str, search_query: Optional[str]) -> str:
    """AND-combines a panel query with the user's active search: '(panel) (search)'."""
    search = (search_query or "").strip()
    if not search:
        return panel_query
    if not panel_query:
        return search
    return f"({panel_query}) ({search})"
