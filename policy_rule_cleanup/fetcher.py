"""Paginated retrieval of a policy layer's access rules."""

import datetime
import logging
import math
from typing import Any, Callable, Dict, Iterator, List, Optional

from .errors import FetchError, InconsistentPaginationError
from .models import Rule

# hits-settings.from-date used when the caller wants hits since the rule base began
RULEBASE_EPOCH = datetime.date(2000, 1, 1)
DEFAULT_PAGE_SIZE = 100
AUDIT_DATE_FORMAT = "%Y-%m-%d"


def _names(objects: Optional[List[Dict[str, Any]]]) -> tuple:
    return tuple(obj.get("name", obj.get("uid", "")) for obj in objects or [])


def parse_audit_date(value: Optional[str]) -> Optional[datetime.date]:
    """Parse the custom audit field; empty or malformed values mean no date."""
    if not value:
        return None
    try:
        return datetime.datetime.strptime(value.strip(), AUDIT_DATE_FORMAT).date()
    except ValueError:
        logging.warning(f"Ignoring unparseable disable date '{value}'")
        return None


def parse_rule(data: Dict[str, Any], audit_field: str = "field-1") -> Rule:
    """
    Build a Rule from a show-access-rulebase entry.

    Raises:
        FetchError: the entry carries no hit statistics
    """
    uid = data.get("uid", "")
    hits = data.get("hits")
    if not isinstance(hits, dict) or "value" not in hits:
        raise FetchError(f"Rule {uid} has no hit statistics; is hit counting enabled?")
    try:
        rule_number = int(data.get("rule-number", 0))
        hit_count = int(hits["value"])
    except (TypeError, ValueError) as e:
        raise FetchError(f"Rule {uid} has a malformed rule number or hit count: {e}") from e
    if hit_count < 0:
        raise FetchError(f"Rule {uid} reports a negative hit count ({hit_count})")

    meta = data.get("meta-info") or {}
    track = data.get("track") or {}
    track_type = track.get("type") if isinstance(track, dict) else None
    action = data.get("action") or {}
    custom_fields = data.get("custom-fields") or {}

    return Rule(
        uid=uid,
        rule_number=rule_number,
        name=data.get("name") or "",
        hit_count=hit_count,
        enabled=bool(data.get("enabled", True)),
        disable_date=parse_audit_date(custom_fields.get(audit_field)),
        source=_names(data.get("source")),
        destination=_names(data.get("destination")),
        service=_names(data.get("service")),
        action=action.get("name", "") if isinstance(action, dict) else str(action),
        track=track_type.get("name", "") if isinstance(track_type, dict) else "",
        install_on=_names(data.get("install-on")),
        comments=data.get("comments") or "",
        creator=meta.get("creator", ""),
        creation_time=(meta.get("creation-time") or {}).get("iso-8601", ""),
        last_modifier=meta.get("last-modifier", ""),
        last_modify_time=(meta.get("last-modify-time") or {}).get("iso-8601", ""),
    )


def _flatten(entries: List[Dict[str, Any]]) -> Iterator[Dict[str, Any]]:
    """Yield access rules, descending into access sections."""
    for entry in entries:
        if entry.get("type") == "access-section":
            yield from _flatten(entry.get("rulebase") or [])
        elif entry.get("type", "access-rule") == "access-rule":
            yield entry


def fetch_rules(client, layer: str, hits_from: Optional[datetime.date] = None,
                page_size: int = DEFAULT_PAGE_SIZE, audit_field: str = "field-1",
                on_page: Optional[Callable[[int, int], None]] = None) -> Iterator[Rule]:
    """
    Retrieve every access rule of a layer, one page at a time.

    The cursor advances to the high-water mark (``to``) of each page until
    it reaches the total the server reported on the first page.

    Args:
        client: ManagementClient with an open session
        layer: Access layer name
        hits_from: Count hits from this date; None means since RULEBASE_EPOCH
        page_size: Rules requested per page
        audit_field: Custom field holding the disable date
        on_page: Called with (rules fetched so far, total) after every page

    Yields:
        Rule objects in rule base order

    Raises:
        InconsistentPaginationError: the layer changed while it was being read
        FetchError: a page lacks a rule total, or a rule lacks valid hit statistics
    """
    from_date = (hits_from or RULEBASE_EPOCH).isoformat()
    offset = 0
    total = None
    max_pages = None
    pages = 0
    seen = set()

    while total is None or offset < total:
        if max_pages is not None and pages >= max_pages:
            raise InconsistentPaginationError(
                f"Layer '{layer}' not fully read after {pages} pages "
                f"(offset {offset} of {total})"
            )
        body = client.api_call("show-access-rulebase", {
            "name": layer,
            "offset": offset,
            "limit": page_size,
            "details-level": "standard",
            "use-object-dictionary": False,
            "show-hits": True,
            "hits-settings": {"from-date": from_date},
        })
        pages += 1

        page_total = body.get("total")
        if isinstance(page_total, bool) or not isinstance(page_total, int) or page_total < 0:
            raise FetchError(
                f"Layer '{layer}' page at offset {offset} carries no valid rule total ({page_total!r})"
            )
        if total is None:
            total = page_total
            max_pages = max(1, math.ceil(total / page_size))
            logging.info(f"Layer '{layer}' holds {total} rules (hits from {from_date})")
            if total == 0:
                break
        elif page_total != total:
            raise InconsistentPaginationError(
                f"Rule count of layer '{layer}' changed from {total} to {page_total} during fetch"
            )

        high_water = body.get("to")
        if isinstance(high_water, bool) or not isinstance(high_water, int) or high_water <= offset:
            raise InconsistentPaginationError(
                f"Layer '{layer}' page at offset {offset} did not advance the cursor"
            )
        if high_water > total:
            raise InconsistentPaginationError(
                f"Layer '{layer}' page ended at {high_water}, beyond the total of {total}"
            )

        for entry in _flatten(body.get("rulebase") or []):
            rule = parse_rule(entry, audit_field)
            if rule.uid in seen:
                raise InconsistentPaginationError(
                    f"Rule {rule.uid} returned twice while reading layer '{layer}'"
                )
            seen.add(rule.uid)
            yield rule

        offset = high_water
        logging.debug(f"Fetched rules up to {offset}/{total}")
        if on_page:
            on_page(offset, total)

    if total and len(seen) != total:
        raise InconsistentPaginationError(
            f"Read {len(seen)} unique rules from layer '{layer}', expected {total}"
        )
