"""
Negotiation export.

WHAT: Serialize one negotiation as JSON, CSV or plain text
WHY: Audit trails and sharing outside the running process
HOW: Pure transformations of the same NegotiationState snapshot
"""

import csv
import io
import json
from datetime import datetime

from ..models.negotiation import NegotiationState, RoundLimits
from ..utils.offers import format_price

EXPORT_FORMATS = ("json", "csv", "txt")

CSV_COLUMNS = ["timestamp", "round", "branch", "sender", "content", "offer_amount", "currency", "action", "sentiment"]


def build_export_data(state: NegotiationState, limits: RoundLimits | None = None) -> dict:
    """Structured export of the active lineage plus branch and analytics info."""
    return {
        "metadata": {
            "negotiation_id": state.negotiation_id,
            "exported_at": datetime.now().isoformat(),
            "created_at": state.created_at.isoformat(),
            "last_activity": state.last_activity.isoformat(),
            "status": state.status,
            "current_round": state.current_round,
            "max_rounds": state.max_rounds,
        },
        "product": state.product.model_dump(mode="json"),
        "settings": state.settings.model_dump(mode="json"),
        "active_branch": state.active_branch,
        "branches": [
            {
                "name": branch.name,
                "parent": branch.parent,
                "branch_point": branch.branch_point,
                "created_at": branch.created_at.isoformat(),
                "message_count": len(branch.messages),
            }
            for branch in state.branches.values()
        ],
        "messages": [m.model_dump(mode="json") for m in state.messages],
        "offers": [o.model_dump(mode="json") for o in state.offers],
        "analytics": state.analytics.model_dump(mode="json"),
        "limits": limits.model_dump(mode="json") if limits else None,
    }


def to_json(state: NegotiationState, limits: RoundLimits | None = None) -> str:
    return json.dumps(build_export_data(state, limits), indent=2)


def to_csv(state: NegotiationState) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    for message in state.messages:
        writer.writerow({
            "timestamp": message.timestamp.isoformat(),
            "round": message.round,
            "branch": message.branch,
            "sender": message.sender,
            "content": message.content,
            "offer_amount": message.offer.amount if message.offer else "",
            "currency": message.offer.currency if message.offer else "",
            "action": message.action or "",
            "sentiment": "" if message.sentiment is None else message.sentiment,
        })
    return buffer.getvalue()


def to_text(state: NegotiationState) -> str:
    analytics = state.analytics
    lines = [
        f"Negotiation {state.negotiation_id}",
        f"Product: {state.product.title} (listed at {format_price(state.product.base_price)})",
        f"Status: {state.status}, round {state.current_round}/{state.max_rounds}, branch {state.active_branch}",
        f"Phase: {analytics.phase}, success probability {analytics.success_probability:.0%}",
        "",
    ]
    for message in state.messages:
        offer = f" (Offered: {format_price(message.offer.amount)})" if message.offer else ""
        lines.append(
            f"[{message.timestamp.strftime('%Y-%m-%d %H:%M:%S')}] Round {message.round} - "
            f"{message.sender}: {message.content}{offer}"
        )
    return "\n".join(lines) + "\n"


def export_state(state: NegotiationState, fmt: str = "json", limits: RoundLimits | None = None) -> str:
    """
    Serialize a negotiation.

    Raises:
        ValueError: Unknown format
    """
    fmt = fmt.lower()
    if fmt == "json":
        return to_json(state, limits)
    if fmt == "csv":
        return to_csv(state)
    if fmt == "txt":
        return to_text(state)
    raise ValueError(f"Unsupported export format: {fmt} (expected one of {', '.join(EXPORT_FORMATS)})")
