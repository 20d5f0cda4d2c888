import io
import json
from typing import Dict, List, Optional

import pytest
from PIL import Image

from classifier import ReviewClassifier
from models import (
    ImageBlob, ImageMetadata, ModerationJob, ModerationStatus, ReportFeed, ValidationConfig,
)
from moderation_manager import ModerationManager
from providers import AsyncJobProvider, SyncReviewProvider

CALLBACK = "https://moderation.example.com/callback"


def make_image(width: int, height: int, image_format: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(200, 30, 30)).save(buffer, format=image_format)
    return buffer.getvalue()


def feed_page(reports, app_handle, owner_of, owner_handle, cursor, limit):
    """Newest first, ties broken by handle, like a Redis sorted set read in reverse"""
    matching = sorted(
        (report for (app, _), report in reports.items() if app == app_handle and owner_of(report) == owner_handle),
        key=lambda report: (report.created_at, report.report_handle),
        reverse=True,
    )
    handles = [report.report_handle for report in matching]
    start = 0
    if cursor:
        if cursor not in handles:
            return []
        start = handles.index(cursor) + 1
    return matching[start:start + limit]


class InMemoryStore:
    """Every collaborator of the moderation core, kept in dicts"""

    def __init__(self):
        self.topics = {}
        self.comments = {}
        self.replies = {}
        self.profiles = {}
        self.images: Dict[str, bytes] = {}
        self.image_sizes: Dict[str, int] = {}
        self.image_meta = {}
        self.configs = {}
        self.transactions = {}
        self.records = {}
        self.content_reports = {}
        self.user_reports = {}
        self.moderation_jobs: List[ModerationJob] = []
        self.report_jobs: List[ModerationJob] = []
        self.writes: List[tuple] = []
        self.deleted_images: List[str] = []

    def _write(self, kind: str, key: str):
        self.writes.append((kind, key))

    def writes_of(self, kind: str) -> List[tuple]:
        return [write for write in self.writes if write[0] == kind]

    # content and users

    def add(self, entity):
        """Seed an entity without counting it as a write"""
        name = type(entity).__name__
        if name == "Topic":
            self.topics[entity.handle] = entity.model_copy(deep=True)
        elif name == "Comment":
            self.comments[entity.handle] = entity.model_copy(deep=True)
        elif name == "Reply":
            self.replies[entity.handle] = entity.model_copy(deep=True)
        elif name == "UserProfile":
            self.profiles[(entity.app_handle, entity.user_handle)] = entity.model_copy(deep=True)
        elif name == "ImageMetadata":
            self.image_meta[entity.handle] = entity.model_copy(deep=True)
        else:
            raise TypeError(name)
        return entity

    async def read_topic(self, topic_handle):
        topic = self.topics.get(topic_handle)
        return topic.model_copy(deep=True) if topic else None

    async def update_topic(self, topic):
        self._write("topic", topic.handle)
        self.topics[topic.handle] = topic.model_copy(deep=True)

    async def read_comment(self, comment_handle):
        comment = self.comments.get(comment_handle)
        return comment.model_copy(deep=True) if comment else None

    async def update_comment(self, comment):
        self._write("comment", comment.handle)
        self.comments[comment.handle] = comment.model_copy(deep=True)

    async def read_reply(self, reply_handle):
        reply = self.replies.get(reply_handle)
        return reply.model_copy(deep=True) if reply else None

    async def update_reply(self, reply):
        self._write("reply", reply.handle)
        self.replies[reply.handle] = reply.model_copy(deep=True)

    async def read_user_profile(self, user_handle, app_handle):
        profile = self.profiles.get((app_handle, user_handle))
        return profile.model_copy(deep=True) if profile else None

    async def update_user_profile(self, profile):
        self._write("user_profile", profile.user_handle)
        self.profiles[(profile.app_handle, profile.user_handle)] = profile.model_copy(deep=True)

    # images

    def add_image(self, handle: str, data: bytes, size: Optional[int] = None, metadata: Optional[ImageMetadata] = None):
        self.images[handle] = data
        if size is not None:
            self.image_sizes[handle] = size
        if metadata is not None:
            self.add(metadata)

    async def read_image(self, image_handle):
        data = self.images.get(image_handle)
        if data is None:
            return None
        return ImageBlob(handle=image_handle, data=data, size=self.image_sizes.get(image_handle, len(data)))

    async def image_exists(self, image_handle):
        return image_handle in self.images

    async def create_resized_image(self, image_handle, data, size):
        self._write("resized_image", image_handle)
        self.images[image_handle] = data

    async def delete_image(self, app_handle, user_handle, image_handle, image_type):
        self._write("delete_image", image_handle)
        self.deleted_images.append(image_handle)
        self.images.pop(image_handle, None)

    async def read_image_cdn_url(self, image_handle):
        if image_handle in self.images:
            return f"https://cdn.example.com/images/{image_handle}"
        return None

    async def read_image_metadata(self, image_handle):
        metadata = self.image_meta.get(image_handle)
        return metadata.model_copy(deep=True) if metadata else None

    async def update_image_metadata(self, metadata):
        self._write("image_status", metadata.handle)
        self.image_meta[metadata.handle] = metadata.model_copy(deep=True)

    # app config

    def configure(self, app_handle: str, **kwargs):
        self.configs[app_handle] = ValidationConfig(**kwargs)

    async def read_validation_config(self, app_handle):
        return self.configs.get(app_handle)

    # transactions and records

    async def insert_transaction(self, transaction):
        self._write("transaction", transaction.handle)
        self.transactions[transaction.handle] = transaction.model_copy(deep=True)

    async def query_transaction(self, handle):
        transaction = self.transactions.get(handle)
        return transaction.model_copy(deep=True) if transaction else None

    async def update_transaction_response(self, handle, responded_at, response_body):
        self._write("transaction_response", handle)
        transaction = self.transactions[handle]
        transaction.responded_at = responded_at
        transaction.response_body = response_body

    async def insert_moderation(self, record):
        self._write("moderation", record.handle)
        self.records[(record.app_handle, record.handle)] = record.model_copy(deep=True)

    async def query_moderation(self, app_handle, handle):
        record = self.records.get((app_handle, handle))
        return record.model_copy(deep=True) if record else None

    async def update_moderation_status(self, app_handle, handle, status: ModerationStatus):
        self._write("moderation_status", handle)
        record = self.records.get((app_handle, handle))
        if record is not None:
            record.status = status

    # reports

    async def insert_content_report(self, report):
        self._write("content_report", report.report_handle)
        self.content_reports[(report.app_handle, report.report_handle)] = report.model_copy(deep=True)

    async def query_content_report(self, app_handle, report_handle):
        return self.content_reports.get((app_handle, report_handle))

    async def count_content_reports(self, app_handle, content_handle):
        return len({
            key for key, report in self.content_reports.items()
            if key[0] == app_handle and report.content_handle == content_handle
        })

    async def has_reported_content_before(self, app_handle, content_handle, reporting_user_handle):
        return any(
            key[0] == app_handle and report.content_handle == content_handle
            and report.reporting_user_handle == reporting_user_handle
            for key, report in self.content_reports.items()
        )

    async def read_content_reports(self, app_handle, feed, owner_handle, cursor, limit):
        owners = {
            ReportFeed.FOR_CONTENT: lambda report: report.content_handle,
            ReportFeed.FOR_USER: lambda report: report.content_user_handle,
            ReportFeed.FROM_USER: lambda report: report.reporting_user_handle,
            ReportFeed.FOR_APP: lambda report: None,
        }
        return feed_page(self.content_reports, app_handle, owners[feed], owner_handle, cursor, limit)

    async def insert_user_report(self, report):
        self._write("user_report", report.report_handle)
        self.user_reports[(report.app_handle, report.report_handle)] = report.model_copy(deep=True)

    async def query_user_report(self, app_handle, report_handle):
        return self.user_reports.get((app_handle, report_handle))

    async def count_user_reports(self, app_handle, reported_user_handle):
        return len({
            key for key, report in self.user_reports.items()
            if key[0] == app_handle and report.reported_user_handle == reported_user_handle
        })

    async def has_reported_user_before(self, app_handle, reported_user_handle, reporting_user_handle):
        return any(
            key[0] == app_handle and report.reported_user_handle == reported_user_handle
            and report.reporting_user_handle == reporting_user_handle
            for key, report in self.user_reports.items()
        )

    async def read_user_reports(self, app_handle, feed, owner_handle, cursor, limit):
        owners = {
            ReportFeed.FOR_USER: lambda report: report.reported_user_handle,
            ReportFeed.FROM_USER: lambda report: report.reporting_user_handle,
            ReportFeed.FOR_APP: lambda report: None,
        }
        return feed_page(self.user_reports, app_handle, owners[feed], owner_handle, cursor, limit)

    # queue

    async def enqueue_moderation_job(self, job):
        self.moderation_jobs.append(job)

    async def enqueue_report_review_job(self, job):
        self.report_jobs.append(job)

    async def requeue_job(self, job):
        if job.job_type.value.endswith("report"):
            await self.enqueue_report_review_job(job)
        else:
            await self.enqueue_moderation_job(job)


class FakeClassificationClient:
    def __init__(self):
        self.jobs = []

    async def submit_async_job(self, request_body, callback_url):
        self.jobs.append({"request": json.loads(request_body), "callback_url": callback_url})
        return f"job-{len(self.jobs)}"


class RecordingReviewClient(ReviewClassifier):
    """Rule-free review client answering with fixed policy codes"""

    def __init__(self, codes=("OK",)):
        super().__init__(llm_client=None)
        self.codes = list(codes)
        self.requests = []

    async def submit_review_request(self, reason, reported_at, callback_url, text1=None, text2=None,
                                    text3=None, image_url=None, country="USA", language="eng"):
        self.requests.append({
            "reason": reason,
            "texts": [text1, text2, text3],
            "image_url": image_url,
            "country": country,
            "language": language,
        })
        return json.dumps({"policyCodes": self.codes})


def classification_response(*codes, status="Completed"):
    return json.dumps({"jobId": "job-1", "status": status, "results": [{"policyCodes": list(codes)}]})


def review_response(*codes):
    return json.dumps({"policyCodes": list(codes)})


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def classification_client():
    return FakeClassificationClient()


@pytest.fixture
def review_client():
    return RecordingReviewClient()


@pytest.fixture
def manager(store, classification_client, review_client):
    return ModerationManager(
        content=store,
        users=store,
        images=store,
        app_config=store,
        transactions=store,
        records=store,
        reports=store,
        queue=store,
        classification_provider=AsyncJobProvider(client=classification_client),
        review_provider=SyncReviewProvider(client=review_client),
        review_response_inline=False,
    )

