import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from config import CLASSIFIER_CREDENTIALS_KEY, MODERATION_QUEUE, REPORTS_QUEUE
from errors import TransactionNotFoundError
from models import (
    ContentReport, ContentType, ImageMetadata, ImageType, JobType, ModerationJob, ModerationStatus,
    ModerationTransaction, ReportFeed, ReportReason, ReportType, ReviewStatus, UserReport,
)
from redis_client import RedisClient

CALLBACK = "https://moderation.example.com/moderation/m-1/results"


@pytest.fixture
def client():
    return AsyncMock()


@pytest.fixture
def binary():
    return AsyncMock()


@pytest.fixture
def redis_client(client, binary):
    return RedisClient(client=client, binary_client=binary)


def test_update_response_of_unknown_transaction(redis_client, client):
    client.get.return_value = None

    with pytest.raises(TransactionNotFoundError):
        asyncio.run(redis_client.update_transaction_response("m-1", datetime.utcnow(), "{}"))
    client.set.assert_not_called()


def test_update_response_overwrites_fields(redis_client, client):
    transaction = ModerationTransaction(handle="m-1", app_handle="app-1", kind=ReportType.CONTENT,
                                        provider="classifier", callback_url=CALLBACK, response_body="old")
    client.get.return_value = transaction.model_dump_json()

    asyncio.run(redis_client.update_transaction_response("m-1", datetime(2024, 1, 1), "new"))

    key, value = client.set.call_args.args
    assert key == "transaction:m-1"
    stored = ModerationTransaction.model_validate_json(value)
    assert stored.response_body == "new"
    assert stored.responded_at == datetime(2024, 1, 1)


def test_missing_moderation_record_is_not_created(redis_client, client):
    client.get.return_value = None

    asyncio.run(redis_client.update_moderation_status("app-1", "m-1", ModerationStatus.FAILED))

    client.set.assert_not_called()


def test_validation_config_parsing(redis_client, client):
    client.hgetall.return_value = {"allow_mature_content": "false", "content_report_threshold": "3"}

    config = asyncio.run(redis_client.read_validation_config("app-1"))

    assert not config.allow_mature_content
    assert config.content_report_threshold == 3
    assert config.user_report_threshold == 0
    client.hgetall.assert_awaited_with("validation_config:app-1")


def test_missing_validation_config(redis_client, client):
    client.hgetall.return_value = {}
    assert asyncio.run(redis_client.read_validation_config("app-1")) is None


def test_classifier_credentials(redis_client, client):
    client.hgetall.return_value = {"url": "https://classifier.example.com", "key": "k"}

    assert asyncio.run(redis_client.read_classifier_credentials()) == ("https://classifier.example.com", "k")
    client.hgetall.assert_awaited_with(CLASSIFIER_CREDENTIALS_KEY)


def test_content_report_indexes(redis_client, client):
    pipe = MagicMock()
    pipe.execute = AsyncMock()
    client.pipeline = MagicMock(return_value=pipe)
    report = ContentReport(report_handle="r-1", app_handle="app-1", content_type=ContentType.TOPIC,
                           content_handle="topic-1", content_user_handle="author-1",
                           reporting_user_handle="reporter-1", reason=ReportReason.SPAM)

    asyncio.run(redis_client.insert_content_report(report))

    assert pipe.set.call_args.args[0] == "content_report:app-1:r-1"
    assert [call.args for call in pipe.sadd.call_args_list] == [
        ("content_reports:app-1:topic-1", "r-1"),
        ("content_reporters:app-1:topic-1", "reporter-1"),
    ]
    assert [call.args[0] for call in pipe.zadd.call_args_list] == [
        "content_report_feed:app-1:for_content:topic-1",
        "content_report_feed:app-1:for_user:author-1",
        "content_report_feed:app-1:from_user:reporter-1",
        "content_report_feed:app-1:for_app",
    ]
    pipe.execute.assert_awaited_once()


def test_report_count_and_history(redis_client, client):
    client.scard.return_value = 4
    client.sismember.return_value = 1

    assert asyncio.run(redis_client.count_user_reports("app-1", "user-1")) == 4
    assert asyncio.run(redis_client.has_reported_user_before("app-1", "user-1", "reporter-1")) is True
    client.scard.assert_awaited_with("user_reports:app-1:user-1")


def test_requeue_routes_by_job_type(redis_client, client):
    report_job = ModerationJob(job_type=JobType.CONTENT_REPORT, app_handle="app-1", handle="r-1", callback_url=CALLBACK)
    image_job = ModerationJob(job_type=JobType.IMAGE, app_handle="app-1", handle="m-1", callback_url=CALLBACK)

    asyncio.run(redis_client.requeue_job(report_job))
    asyncio.run(redis_client.requeue_job(image_job))

    assert [call.args[0] for call in client.lpush.call_args_list] == [REPORTS_QUEUE, MODERATION_QUEUE]


def test_dequeue_job(redis_client, client):
    job = ModerationJob(job_type=JobType.USER, app_handle="app-1", handle="m-1", callback_url=CALLBACK, user_handle="u-1")
    client.brpop.return_value = (MODERATION_QUEUE, job.model_dump_json())

    assert asyncio.run(redis_client.dequeue_job(timeout=1)) == job


def test_delete_image_removes_renditions(redis_client, binary):
    asyncio.run(redis_client.delete_image("app-1", "user-1", "img-1", ImageType.USER_PHOTO))

    keys = binary.delete.call_args.args
    assert "image:img-1" in keys
    assert "image:img-1t" in keys
    assert len(keys) == 7


def test_read_image_reports_size(redis_client, binary):
    binary.get.return_value = b"\x89PNG..."

    blob = asyncio.run(redis_client.read_image("img-1"))

    assert blob.size == 7
    binary.get.assert_awaited_with("image:img-1")


def test_image_metadata_is_upserted(redis_client, client):
    metadata = ImageMetadata(handle="img-1", app_handle="app-1", user_handle="user-1",
                             review_status=ReviewStatus.BANNED)

    asyncio.run(redis_client.update_image_metadata(metadata))

    key, value = client.set.call_args.args
    assert key == "image_meta:img-1"
    assert ImageMetadata.model_validate_json(value).review_status == ReviewStatus.BANNED
    client.get.assert_not_called()


def test_cdn_url_only_for_existing_images(redis_client, binary):
    binary.exists.return_value = 0
    assert asyncio.run(redis_client.read_image_cdn_url("img-1")) is None


def test_ping_failure(redis_client, client):
    client.ping.side_effect = RedisConnectionError("refused")
    assert asyncio.run(redis_client.ping()) is False


def test_report_feed_page_after_cursor(redis_client, client):
    report = UserReport(report_handle="r-2", app_handle="app-1", reported_user_handle="user-1",
                        reporting_user_handle="reporter-1", reason=ReportReason.SPAM)
    client.zrevrank.return_value = 0
    client.zrevrange.return_value = ["r-2"]
    client.mget.return_value = [report.model_dump_json()]

    reports = asyncio.run(redis_client.read_user_reports("app-1", ReportFeed.FOR_USER, "user-1", "r-1", 10))

    assert reports == [report]
    client.zrevrank.assert_awaited_with("user_report_feed:app-1:for_user:user-1", "r-1")
    client.zrevrange.assert_awaited_with("user_report_feed:app-1:for_user:user-1", 1, 10)
    client.mget.assert_awaited_with(["user_report:app-1:r-2"])


def test_report_feed_with_unknown_cursor(redis_client, client):
    client.zrevrank.return_value = None

    assert asyncio.run(redis_client.read_content_reports("app-1", ReportFeed.FOR_APP, None, "gone", 10)) == []
    client.zrevrange.assert_not_called()
