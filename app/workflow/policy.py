import logging
from datetime import datetime
from typing import Any, Dict, Optional

from app.config import settings

logger = logging.getLogger(__name__)

def resolve_amount(extracted_data: Optional[Dict[str, Any]]) -> float:
    """
    Decision amount from extracted data.
    Missing or unparseable amounts count as 0, which routes to automatic approval.
    """
    raw = (extracted_data or {}).get("amount")
    if raw is None:
        logger.warning("No amount extracted; defaulting to 0 (automatic approval)")
        return 0.0
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning(f"Unparseable amount {raw!r}; defaulting to 0 (automatic approval)")
        return 0.0

def requires_manual_approval(amount: float, threshold: Optional[float] = None) -> bool:
    """Inclusive on the manual side: amount == threshold needs a human."""
    threshold = settings.APPROVAL_THRESHOLD if threshold is None else threshold
    return amount >= threshold

def automatic_approval_result(threshold: Optional[float] = None) -> Dict[str, Any]:
    threshold = settings.APPROVAL_THRESHOLD if threshold is None else threshold
    return {
        "status": "approved",
        "approval_type": "automatic",
        "approved_by": "system",
        "approved_at": datetime.utcnow().isoformat(),
        "reason": f"Amount below {threshold:g} threshold",
    }
