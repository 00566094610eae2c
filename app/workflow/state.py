from typing import Dict, FrozenSet, List
from app.models.document import DocumentStatus

# target status -> statuses it may be entered from
TRANSITIONS: Dict[DocumentStatus, FrozenSet[DocumentStatus]] = {
    DocumentStatus.DATA_EXTRACTED: frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.AWAITING_APPROVAL: frozenset({DocumentStatus.DATA_EXTRACTED}),
    DocumentStatus.APPROVED: frozenset({DocumentStatus.DATA_EXTRACTED, DocumentStatus.AWAITING_APPROVAL}),
    DocumentStatus.REJECTED: frozenset({DocumentStatus.AWAITING_APPROVAL}),
    DocumentStatus.ERROR: frozenset({DocumentStatus.PROCESSING, DocumentStatus.DATA_EXTRACTED}),
}

TERMINAL_STATUSES: FrozenSet[DocumentStatus] = frozenset({
    DocumentStatus.APPROVED,
    DocumentStatus.REJECTED,
    DocumentStatus.ERROR,
})

def allowed_sources(target: DocumentStatus) -> List[str]:
    """Statuses a document must currently hold to move into ``target``."""
    return sorted(s.value for s in TRANSITIONS.get(DocumentStatus(target), frozenset()))

def can_transition(current: str, target: str) -> bool:
    return DocumentStatus(current) in TRANSITIONS.get(DocumentStatus(target), frozenset())

def is_terminal(status: str) -> bool:
    return DocumentStatus(status) in TERMINAL_STATUSES
