"""
Severity transitions for live content.

Banned absorbs every later verdict, Mature blocks only a later Clean, and an
unreviewed (Active) entity accepts anything. Every enforcement write consults
`transition_allowed` with the status read immediately before the write.
"""
from enum import Enum

from models import ReviewStatus

ENFORCEABLE = {ReviewStatus.CLEAN, ReviewStatus.MATURE, ReviewStatus.BANNED}


class EnforcementAction(str, Enum):
    BAN = "ban"
    TAG = "tag"


def transition_allowed(current: ReviewStatus, proposed: ReviewStatus) -> bool:
    """Return True when `proposed` may overwrite `current`"""
    if proposed == ReviewStatus.CLEAN:
        return current not in (ReviewStatus.MATURE, ReviewStatus.BANNED)
    if proposed == ReviewStatus.MATURE:
        return current != ReviewStatus.BANNED
    if proposed in (ReviewStatus.BANNED, ReviewStatus.FAILED):
        return True
    # Active is the unset state, never a target
    return False


def resolve_action(severity: ReviewStatus, allow_mature_content: bool) -> EnforcementAction:
    """
    Map a verdict onto what happens to the target.

    - banned, or mature on an app that forbids mature content: ban
    - clean, or mature on an app that allows it: tag with the severity
    """
    if severity not in ENFORCEABLE:
        raise ValueError(f"Severity {severity} cannot be enforced")

    if severity == ReviewStatus.BANNED:
        return EnforcementAction.BAN
    if severity == ReviewStatus.MATURE and not allow_mature_content:
        return EnforcementAction.BAN
    return EnforcementAction.TAG
