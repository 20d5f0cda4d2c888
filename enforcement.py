import logging

from models import ModerationRecord, ReportType, ReviewStatus, ValidationConfig
from severity import EnforcementAction, resolve_action
from stores import AppConfigStore
from targets import TargetRegistry

logger = logging.getLogger(__name__)


class EnforcementDispatcher:
    """Applies a verdict to the live target of a moderation record"""

    def __init__(self, targets: TargetRegistry, app_config: AppConfigStore):
        self.targets = targets
        self.app_config = app_config

    async def is_mature_content_allowed(self, app_handle: str) -> bool:
        config = await self.app_config.read_validation_config(app_handle) or ValidationConfig()
        return config.allow_mature_content

    async def enforce(self, kind: ReportType, record: ModerationRecord, severity: ReviewStatus) -> bool:
        """
        Ban or tag the target. Returns False when the target was left alone
        (deleted, already banned, or holding a stronger verdict).
        """
        target, ref = self.targets.resolve(kind, record)
        allow_mature = await self.is_mature_content_allowed(record.app_handle)
        action = resolve_action(severity, allow_mature)

        logger.info(f"Moderation {record.handle}: {severity.value} verdict, {action.value} {target.name} {ref.handle}")
        if action == EnforcementAction.BAN:
            return await target.ban(ref)
        return await target.tag(ref, severity)
