"""
Caller-facing entry points of the moderation core.

Two paths share one result pipeline:

- proactive: `create_*_moderation_request` enqueues a job; the worker calls
  `submit_*_for_moderation`, which sends the target to the classification
  provider. Its verdict arrives later through `process_moderation_results`.
- reactive: `create_*_report` stores a user report and, once the app
  threshold is reached, enqueues a review job; the worker calls
  `submit_*_report_for_review`, which sends the reported target to the
  review provider. Verdicts arrive through `process_report_result`.

`create_*` and `process_*` raise on caller mistakes. `submit_*` run inside
the worker; they return None whenever there is nothing to submit.
"""
import logging
from typing import Dict, List, Optional

from config import (
    ANTHROPIC_MODEL, CLASSIFIER_KEY, CLASSIFIER_URL, MAX_REPORT_FEED_LIMIT, REPORT_FEED_LIMIT,
    REVIEW_RESPONSE_INLINE,
)
from errors import require
from enforcement import EnforcementDispatcher
from image_moderation import ImageGate
from models import (
    ContentReport, ContentType, ImageType, JobType, ModerationJob, ModerationRecord,
    ModerationStatus, ModerationTransaction, ReportFeed, ReportReason, ReportType, Submission, UserReport,
)
from moderation_graph import ReviewResultProcessor
from payloads import PayloadAssembler
from providers import (
    AsyncJobProvider, HttpClassificationClient, ModerationProvider, SyncReviewProvider,
    validate_callback_url,
)
from classifier import ReviewClassifier, create_llm_client
from stores import (
    AppConfigStore, ContentStore, ImageStore, ModerationQueue, ModerationStore,
    ReportStore, TransactionStore, UserStore,
)
from submissions import AdmissionPolicy, SubmissionTracker
from targets import ModerationTarget, TargetRef, TargetRegistry

logger = logging.getLogger(__name__)


class ModerationManager:
    def __init__(
        self,
        content: ContentStore,
        users: UserStore,
        images: ImageStore,
        app_config: AppConfigStore,
        transactions: TransactionStore,
        records: ModerationStore,
        reports: ReportStore,
        queue: ModerationQueue,
        classification_provider: ModerationProvider,
        review_provider: ModerationProvider,
        gate: Optional[ImageGate] = None,
        review_response_inline: bool = REVIEW_RESPONSE_INLINE,
    ):
        self.reports = reports
        self.queue = queue
        self.classification_provider = classification_provider
        self.review_provider = review_provider
        self.review_response_inline = review_response_inline

        self.targets = TargetRegistry(content, users, images)
        self.assembler = PayloadAssembler(images, gate or ImageGate(images))
        self.tracker = SubmissionTracker(transactions, records)
        self.admission = AdmissionPolicy(app_config, reports, self.tracker)
        self.dispatcher = EnforcementDispatcher(self.targets, app_config)

        providers: Dict[str, ModerationProvider] = {
            classification_provider.name: classification_provider,
            review_provider.name: review_provider,
        }
        self.processor = ReviewResultProcessor(transactions, records, self.dispatcher, providers)

    # Proactive requests

    async def create_content_moderation_request(
        self,
        app_handle: str,
        content_type: ContentType,
        content_handle: str,
        user_handle: str,
        callback_url: str,
        handle: Optional[str] = None,
    ) -> str:
        """Queue a topic, comment or reply for classification; returns the moderation handle"""
        require(app_handle, "app_handle")
        require(content_handle, "content_handle")
        require(user_handle, "user_handle")
        validate_callback_url(callback_url)
        self.targets.for_content(content_type)

        handle = handle or self.tracker.new_handle()
        await self.queue.enqueue_moderation_job(ModerationJob(
            job_type=JobType.CONTENT,
            app_handle=app_handle,
            handle=handle,
            callback_url=callback_url,
            content_type=content_type,
            content_handle=content_handle,
            user_handle=user_handle,
        ))
        return handle

    async def create_image_moderation_request(
        self,
        app_handle: str,
        image_handle: str,
        user_handle: str,
        image_type: ImageType,
        callback_url: str,
        handle: Optional[str] = None,
    ) -> str:
        """Queue an image for classification; returns the moderation handle"""
        require(app_handle, "app_handle")
        require(image_handle, "image_handle")
        require(user_handle, "user_handle")
        validate_callback_url(callback_url)

        handle = handle or self.tracker.new_handle()
        await self.queue.enqueue_moderation_job(ModerationJob(
            job_type=JobType.IMAGE,
            app_handle=app_handle,
            handle=handle,
            callback_url=callback_url,
            blob_handle=image_handle,
            user_handle=user_handle,
            image_type=image_type,
        ))
        return handle

    async def create_user_moderation_request(
        self, app_handle: str, user_handle: str, callback_url: str, handle: Optional[str] = None
    ) -> str:
        """Queue a user profile for classification; returns the moderation handle"""
        require(app_handle, "app_handle")
        require(user_handle, "user_handle")
        validate_callback_url(callback_url)

        handle = handle or self.tracker.new_handle()
        await self.queue.enqueue_moderation_job(ModerationJob(
            job_type=JobType.USER,
            app_handle=app_handle,
            handle=handle,
            callback_url=callback_url,
            user_handle=user_handle,
        ))
        return handle

    async def submit_content_for_moderation(self, job: ModerationJob) -> Optional[ModerationTransaction]:
        target = self.targets.for_content(job.content_type)
        ref = TargetRef(app_handle=job.app_handle, handle=job.content_handle, user_handle=job.user_handle)
        record = ModerationRecord(
            handle=job.handle,
            app_handle=job.app_handle,
            content_type=job.content_type,
            content_handle=job.content_handle,
            user_handle=job.user_handle,
        )
        return await self._submit(self.classification_provider, ReportType.CONTENT, target, ref, record, Submission(callback_url=job.callback_url))

    async def submit_image_for_moderation(self, job: ModerationJob) -> Optional[ModerationTransaction]:
        ref = TargetRef(
            app_handle=job.app_handle,
            handle=job.blob_handle,
            user_handle=job.user_handle,
            image_type=job.image_type,
        )
        record = ModerationRecord(
            handle=job.handle,
            app_handle=job.app_handle,
            user_handle=job.user_handle,
            image_handle=job.blob_handle,
            image_type=job.image_type,
        )
        return await self._submit(self.classification_provider, ReportType.IMAGE, self.targets.image, ref, record, Submission(callback_url=job.callback_url))

    async def submit_user_for_moderation(self, job: ModerationJob) -> Optional[ModerationTransaction]:
        ref = TargetRef(app_handle=job.app_handle, handle=job.user_handle)
        record = ModerationRecord(handle=job.handle, app_handle=job.app_handle, user_handle=job.user_handle)
        return await self._submit(self.classification_provider, ReportType.USER, self.targets.user, ref, record, Submission(callback_url=job.callback_url))

    # Reports

    async def create_content_report(
        self,
        app_handle: str,
        report_handle: str,
        content_type: ContentType,
        content_handle: str,
        content_user_handle: str,
        reporting_user_handle: str,
        reason: ReportReason,
        callback_url: str,
    ) -> bool:
        """
        Store a content report. Returns True when it also queued a review
        of the reported content.
        """
        require(app_handle, "app_handle")
        require(report_handle, "report_handle")
        require(content_handle, "content_handle")
        require(content_user_handle, "content_user_handle")
        require(reporting_user_handle, "reporting_user_handle")
        validate_callback_url(callback_url)
        self.targets.for_content(content_type)

        has_complained_before = await self.reports.has_reported_content_before(app_handle, content_handle, reporting_user_handle)
        await self.reports.insert_content_report(ContentReport(
            report_handle=report_handle,
            app_handle=app_handle,
            content_type=content_type,
            content_handle=content_handle,
            content_user_handle=content_user_handle,
            reporting_user_handle=reporting_user_handle,
            reason=reason,
            has_complained_before=has_complained_before,
        ))

        if not await self.admission.is_content_review_required(report_handle, app_handle, content_handle):
            return False

        await self.queue.enqueue_report_review_job(ModerationJob(
            job_type=JobType.CONTENT_REPORT,
            app_handle=app_handle,
            handle=report_handle,
            callback_url=callback_url,
            content_type=content_type,
            content_handle=content_handle,
            user_handle=content_user_handle,
        ))
        return True

    async def create_user_report(
        self,
        app_handle: str,
        report_handle: str,
        reported_user_handle: str,
        reporting_user_handle: str,
        reason: ReportReason,
        callback_url: str,
    ) -> bool:
        """
        Store a user report. Returns True when it also queued a review of
        the reported user.
        """
        require(app_handle, "app_handle")
        require(report_handle, "report_handle")
        require(reported_user_handle, "reported_user_handle")
        require(reporting_user_handle, "reporting_user_handle")
        validate_callback_url(callback_url)

        has_complained_before = await self.reports.has_reported_user_before(app_handle, reported_user_handle, reporting_user_handle)
        await self.reports.insert_user_report(UserReport(
            report_handle=report_handle,
            app_handle=app_handle,
            reported_user_handle=reported_user_handle,
            reporting_user_handle=reporting_user_handle,
            reason=reason,
            has_complained_before=has_complained_before,
        ))

        if not await self.admission.is_user_review_required(report_handle, app_handle, reported_user_handle):
            return False

        await self.queue.enqueue_report_review_job(ModerationJob(
            job_type=JobType.USER_REPORT,
            app_handle=app_handle,
            handle=report_handle,
            callback_url=callback_url,
            user_handle=reported_user_handle,
        ))
        return True

    async def submit_content_report_for_review(self, job: ModerationJob) -> Optional[ModerationTransaction]:
        report = await self.reports.query_content_report(job.app_handle, job.handle)
        if report is None:
            logger.error(f"Content report {job.handle} not found in app {job.app_handle}")
            return None

        target = self.targets.for_content(report.content_type)
        ref = TargetRef(app_handle=report.app_handle, handle=report.content_handle, user_handle=report.content_user_handle)
        record = ModerationRecord(
            handle=report.report_handle,
            app_handle=report.app_handle,
            content_type=report.content_type,
            content_handle=report.content_handle,
            user_handle=report.content_user_handle,
        )
        submission = Submission(callback_url=job.callback_url, reason=report.reason, reported_at=report.created_at)
        return await self._submit(self.review_provider, ReportType.CONTENT, target, ref, record, submission)

    async def submit_user_report_for_review(self, job: ModerationJob) -> Optional[ModerationTransaction]:
        report = await self.reports.query_user_report(job.app_handle, job.handle)
        if report is None:
            logger.error(f"User report {job.handle} not found in app {job.app_handle}")
            return None

        ref = TargetRef(app_handle=report.app_handle, handle=report.reported_user_handle)
        record = ModerationRecord(
            handle=report.report_handle,
            app_handle=report.app_handle,
            user_handle=report.reported_user_handle,
        )
        submission = Submission(callback_url=job.callback_url, reason=report.reason, reported_at=report.created_at)
        return await self._submit(self.review_provider, ReportType.USER, self.targets.user, ref, record, submission)

    async def read_content_report(self, app_handle: str, report_handle: str) -> Optional[ContentReport]:
        return await self.reports.query_content_report(app_handle, report_handle)

    async def read_user_report(self, app_handle: str, report_handle: str) -> Optional[UserReport]:
        return await self.reports.query_user_report(app_handle, report_handle)

    async def read_content_reports(
        self,
        app_handle: str,
        feed: ReportFeed,
        owner_handle: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: int = REPORT_FEED_LIMIT,
    ) -> List[ContentReport]:
        """
        Page through content reports, newest first. `owner_handle` names the
        content, its author or the reporter, depending on `feed`; the app feed
        takes none.
        """
        require(app_handle, "app_handle")
        owner_handle = self._feed_owner(feed, owner_handle)
        return await self.reports.read_content_reports(app_handle, feed, owner_handle, cursor, self._feed_limit(limit))

    async def read_user_reports(
        self,
        app_handle: str,
        feed: ReportFeed,
        owner_handle: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: int = REPORT_FEED_LIMIT,
    ) -> List[UserReport]:
        require(app_handle, "app_handle")
        if feed == ReportFeed.FOR_CONTENT:
            raise ValueError("User reports have no content feed")
        owner_handle = self._feed_owner(feed, owner_handle)
        return await self.reports.read_user_reports(app_handle, feed, owner_handle, cursor, self._feed_limit(limit))

    @staticmethod
    def _feed_owner(feed: ReportFeed, owner_handle: Optional[str]) -> Optional[str]:
        if feed == ReportFeed.FOR_APP:
            return None
        return require(owner_handle, "owner_handle")

    @staticmethod
    def _feed_limit(limit: int) -> int:
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        return min(limit, MAX_REPORT_FEED_LIMIT)

    async def count_content_reports(self, app_handle: str, content_handle: str) -> int:
        return await self.reports.count_content_reports(app_handle, content_handle)

    async def count_user_reports(self, app_handle: str, user_handle: str) -> int:
        return await self.reports.count_user_reports(app_handle, user_handle)

    # Results

    async def process_moderation_results(self, handle: str, raw_response: str) -> Optional[ModerationStatus]:
        """Classification provider callback"""
        return await self.processor.process(handle, raw_response)

    async def process_report_result(self, report_handle: str, raw_response: str) -> Optional[ModerationStatus]:
        """Review provider callback"""
        return await self.processor.process(report_handle, raw_response)

    async def _submit(
        self,
        provider: ModerationProvider,
        kind: ReportType,
        target: ModerationTarget,
        ref: TargetRef,
        record: ModerationRecord,
        submission: Submission,
    ) -> Optional[ModerationTransaction]:
        if await self.tracker.already_submitted(record.handle):
            logger.info(f"Moderation {record.handle} was already submitted in app {record.app_handle}")
            return None

        payload = await self.assembler.assemble(target, ref)
        if payload is None:
            return None

        submission.texts = payload.texts
        submission.image_url = payload.image_url
        transaction = await self.tracker.submit(provider, kind, submission, record)

        if self.review_response_inline and transaction.response_body is not None:
            await self.processor.process(transaction.handle, transaction.response_body)
        return transaction


def build_manager(redis_client) -> ModerationManager:
    """Wire the manager against the Redis stores and the configured providers"""
    if CLASSIFIER_URL:
        classification_provider = AsyncJobProvider(client=HttpClassificationClient(CLASSIFIER_URL, CLASSIFIER_KEY))
    else:
        async def classification_client_factory():
            url, key = await redis_client.read_classifier_credentials()
            logger.info("Loaded classification provider credentials from Redis")
            return HttpClassificationClient(url, key)

        classification_provider = AsyncJobProvider(client_factory=classification_client_factory)

    llm_client = create_llm_client()
    if llm_client:
        logger.info(f"Reviewing reports with {ANTHROPIC_MODEL}")
    else:
        logger.info("Reviewing reports with rule-based analysis (set ANTHROPIC_API_KEY for LLM review)")
    review_provider = SyncReviewProvider(client=ReviewClassifier(llm_client))

    return ModerationManager(
        content=redis_client,
        users=redis_client,
        images=redis_client,
        app_config=redis_client,
        transactions=redis_client,
        records=redis_client,
        reports=redis_client,
        queue=redis_client,
        classification_provider=classification_provider,
        review_provider=review_provider,
    )
