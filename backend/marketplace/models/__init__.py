from marketplace.models.user import User
from marketplace.models.section import Section
from marketplace.models.proposal import Proposal, proposal_sections, proposal_targets
from marketplace.models.negotiation import Negotiation
from marketplace.models.settled_deal import SettledDeal
from marketplace.models.audit_log import AuditLog

__all__ = [
    "User",
    "Section",
    "Proposal",
    "proposal_sections",
    "proposal_targets",
    "Negotiation",
    "SettledDeal",
    "AuditLog",
]
