import logging
import uuid
from datetime import datetime

from config import DEFAULT_REPORT_THRESHOLD
from models import (
    ModerationRecord, ModerationTransaction, ReportType, Submission, ValidationConfig,
)
from providers import ModerationProvider
from stores import AppConfigStore, ModerationStore, ReportStore, TransactionStore

logger = logging.getLogger(__name__)


class SubmissionTracker:
    """Remembers what has been sent for review, keyed by moderation or report handle"""

    def __init__(self, transactions: TransactionStore, records: ModerationStore):
        self.transactions = transactions
        self.records = records

    @staticmethod
    def new_handle() -> str:
        return str(uuid.uuid4())

    async def already_submitted(self, handle: str) -> bool:
        return await self.transactions.query_transaction(handle) is not None

    async def submit(
        self,
        provider: ModerationProvider,
        kind: ReportType,
        submission: Submission,
        record: ModerationRecord,
    ) -> ModerationTransaction:
        """
        Call the provider, then persist the transaction and the lookup record.

        Nothing is persisted if the provider call fails. A crash between the
        call and the writes leaves a provider job with no local record.
        """
        receipt = await provider.submit(submission)
        submitted_at = datetime.utcnow()

        transaction = ModerationTransaction(
            handle=record.handle,
            app_handle=record.app_handle,
            kind=kind,
            provider=provider.name,
            submitted_at=submitted_at,
            request_body=receipt.request_body,
            provider_job_id=receipt.job_id,
            callback_url=submission.callback_url,
        )
        # synchronous providers answer right away
        if receipt.response_body is not None:
            transaction.responded_at = submitted_at
            transaction.response_body = receipt.response_body
        await self.transactions.insert_transaction(transaction)

        record.created_at = submitted_at
        await self.records.insert_moderation(record)

        logger.info(f"Submitted {kind.value} moderation {record.handle} to {provider.name} for app {record.app_handle}")
        return transaction


class AdmissionPolicy:
    """Decides whether a new report should trigger a review"""

    def __init__(self, app_config: AppConfigStore, reports: ReportStore, tracker: SubmissionTracker):
        self.app_config = app_config
        self.reports = reports
        self.tracker = tracker

    @staticmethod
    def threshold_reached(report_count: int, threshold: int) -> bool:
        """
        A review is requested each time the report count of a target grows by
        the app threshold. Unset or non-positive thresholds review every report.
        Targets reviewed before may be reviewed again; a banned target is
        dropped later, when its payload is assembled.
        """
        if not threshold or threshold <= 0:
            threshold = DEFAULT_REPORT_THRESHOLD
        return report_count % threshold == 0

    async def _validation_config(self, app_handle: str) -> ValidationConfig:
        return await self.app_config.read_validation_config(app_handle) or ValidationConfig()

    async def is_content_review_required(self, report_handle: str, app_handle: str, content_handle: str) -> bool:
        # Two reports arriving together can both pass this check and both be
        # reviewed. That costs one extra provider call; no lock is taken.
        if await self.tracker.already_submitted(report_handle):
            return False

        config = await self._validation_config(app_handle)
        report_count = await self.reports.count_content_reports(app_handle, content_handle)
        return self.threshold_reached(report_count, config.content_report_threshold)

    async def is_user_review_required(self, report_handle: str, app_handle: str, reported_user_handle: str) -> bool:
        if await self.tracker.already_submitted(report_handle):
            return False

        config = await self._validation_config(app_handle)
        report_count = await self.reports.count_user_reports(app_handle, reported_user_handle)
        return self.threshold_reached(report_count, config.user_report_threshold)
