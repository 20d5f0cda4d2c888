"""
Review providers.

Two providers feed the same result processing:

- `AsyncJobProvider` submits a classification job and gets its verdict later,
  through a callback carrying policy codes per submitted item.
- `SyncReviewProvider` submits a review request and gets policy codes back
  immediately; the provider may call back again later with another one.

Both turn a raw response into a `Verdict` through `interpret`.
"""
import asyncio
import ipaddress
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol
from urllib.parse import urlparse

import requests
from langdetect import DetectorFactory, LangDetectException, detect

from classifier import policy_codes_of
from config import (
    POLICY_CODES, CLASSIFIER_TIMEOUT, DEFAULT_REVIEW_COUNTRY, DEFAULT_REVIEW_LANGUAGE,
)
from errors import InvalidCallbackError, ModerationError, VerdictParseError
from models import ReportReason, ReviewStatus, Submission, SubmissionReceipt, Verdict
from once import AsyncOnce

logger = logging.getLogger(__name__)

DetectorFactory.seed = 0

SEVERITY_RANK = {
    ReviewStatus.CLEAN: 0,
    ReviewStatus.MATURE: 1,
    ReviewStatus.BANNED: 2,
}

# langdetect codes to ISO 639-3
ISO_639_3 = {
    "ar": "ara", "de": "deu", "en": "eng", "es": "spa", "fr": "fra",
    "hi": "hin", "it": "ita", "ja": "jpn", "ko": "kor", "nl": "nld",
    "pl": "pol", "pt": "por", "ru": "rus", "sv": "swe", "tr": "tur",
    "zh-cn": "zho", "zh-tw": "zho",
}

LOOPBACK_HOSTS = {"localhost", "localhost.localdomain"}


def _is_loopback(host: str) -> bool:
    if host.lower() in LOOPBACK_HOSTS:
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def validate_callback_url(url: str) -> str:
    """Providers authenticate their callbacks over TLS, from the public internet"""
    if not url:
        raise ValueError("callback_url is required")
    parsed = urlparse(url)
    if parsed.scheme != "https" or not parsed.hostname or _is_loopback(parsed.hostname):
        raise InvalidCallbackError(f"Callback url not allowed: {url}")
    return url


def validate_image_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname or _is_loopback(parsed.hostname):
        raise InvalidCallbackError(f"Image url not allowed: {url}")
    return url


def severity_for_codes(codes: List[str]) -> ReviewStatus:
    """Strongest severity among the policy codes; no codes means clean"""
    severity = ReviewStatus.CLEAN
    for code in codes:
        policy = POLICY_CODES.get(str(code).upper())
        if policy is None:
            raise VerdictParseError(f"Unknown policy code: {code}")
        candidate = ReviewStatus(policy["severity"])
        if SEVERITY_RANK[candidate] > SEVERITY_RANK[severity]:
            severity = candidate
    return severity


def detect_review_language(texts: List[Optional[str]]) -> str:
    """ISO 639-3 language of the submitted text, defaulting to English"""
    sample = " ".join(text for text in texts if text and text.strip())
    if not sample:
        return DEFAULT_REVIEW_LANGUAGE
    try:
        language = detect(sample)
    except LangDetectException:
        return DEFAULT_REVIEW_LANGUAGE
    return ISO_639_3.get(language, DEFAULT_REVIEW_LANGUAGE)


class ClassificationClient(Protocol):
    async def submit_async_job(self, request_body: str, callback_url: str) -> str: ...


class ReviewClient(Protocol):
    async def submit_review_request(
        self,
        reason: ReportReason,
        reported_at: datetime,
        callback_url: str,
        text1: Optional[str] = None,
        text2: Optional[str] = None,
        text3: Optional[str] = None,
        image_url: Optional[str] = None,
        country: str = DEFAULT_REVIEW_COUNTRY,
        language: str = DEFAULT_REVIEW_LANGUAGE,
    ) -> str: ...

    def is_content_not_allowed(self, response: str) -> bool: ...

    def is_content_mature(self, response: str) -> bool: ...


class ModerationProvider(ABC):
    """
    A review provider and the client that talks to it.

    Pass `client` when it can be built at startup. Pass `client_factory`
    when its endpoint or credentials only become available at runtime; the
    factory then runs once, on first use.
    """

    name = "provider"

    def __init__(self, client: Any = None, client_factory: Optional[Callable[[], Awaitable[Any]]] = None):
        if client is None and client_factory is None:
            raise ValueError("Either client or client_factory is required")
        self._client = client
        self._client_once = AsyncOnce(client_factory) if client is None else None

    async def client(self):
        if self._client is not None:
            return self._client
        return await self._client_once.get()

    @abstractmethod
    async def submit(self, submission: Submission) -> SubmissionReceipt:
        ...

    @abstractmethod
    async def interpret(self, raw_response: str) -> Verdict:
        ...


class AsyncJobProvider(ModerationProvider):
    name = "classifier"

    def build_request(self, submission: Submission) -> Dict[str, Any]:
        items = []
        now = datetime.utcnow().isoformat()
        for text in submission.texts:
            if not text or not text.strip():
                raise ValueError("Text items must not be blank")
            items.append({"type": "text", "value": text, "externalId": str(uuid.uuid4()), "createdAt": now})
        if submission.image_url:
            validate_image_url(submission.image_url)
            items.append({"type": "imageUrl", "value": submission.image_url, "externalId": str(uuid.uuid4()), "createdAt": now})
        return {"items": items}

    async def submit(self, submission: Submission) -> SubmissionReceipt:
        validate_callback_url(submission.callback_url)
        request_body = json.dumps(self.build_request(submission))
        client = await self.client()
        job_id = await client.submit_async_job(request_body, submission.callback_url)
        logger.info(f"Submitted classification job {job_id}")
        return SubmissionReceipt(request_body=request_body, job_id=job_id)

    async def interpret(self, raw_response: str) -> Verdict:
        """
        Expected shape::

            {"jobId": "...", "status": "Completed" | "Failed",
             "results": [{"policyCodes": ["EA", ...]}, ...]}
        """
        try:
            data = json.loads(raw_response)
        except (TypeError, ValueError) as e:
            raise VerdictParseError(f"Response is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise VerdictParseError("Response is not a JSON object")

        status = str(data.get("status", "")).lower()
        if status == "failed":
            return Verdict(failed=True)
        if status not in ("completed", "complete", "succeeded"):
            raise VerdictParseError(f"Job has not completed, status = {status!r}")

        results = data.get("results") or []
        if not isinstance(results, list):
            raise VerdictParseError("results is not a list")
        codes: List[str] = []
        for item in results:
            if not isinstance(item, dict):
                raise VerdictParseError("Malformed result item")
            item_codes = item.get("policyCodes") or []
            if not isinstance(item_codes, list) or not all(isinstance(code, str) for code in item_codes):
                raise VerdictParseError("policyCodes is not a list of strings")
            codes.extend(item_codes)

        return Verdict(severity=severity_for_codes(codes), policy_codes=codes)


class SyncReviewProvider(ModerationProvider):
    name = "review"

    async def submit(self, submission: Submission) -> SubmissionReceipt:
        validate_callback_url(submission.callback_url)
        texts: List[Optional[str]] = list(submission.texts[:3])
        texts.extend([None] * (3 - len(texts)))
        if not any(text and text.strip() for text in texts) and submission.image_url is None:
            raise ValueError("Image and all three pieces of text are empty")

        reason = submission.reason or ReportReason.OTHER
        reported_at = submission.reported_at or datetime.utcnow()
        language = detect_review_language(texts)

        client = await self.client()
        response = await client.submit_review_request(
            reason,
            reported_at,
            submission.callback_url,
            texts[0],
            texts[1],
            texts[2],
            submission.image_url,
            DEFAULT_REVIEW_COUNTRY,
            language,
        )
        request_body = json.dumps({
            "reason": reason.value,
            "reportedAt": reported_at.isoformat(),
            "callbackUrl": submission.callback_url,
            "texts": [text for text in texts if text],
            "imageUrl": submission.image_url,
            "country": DEFAULT_REVIEW_COUNTRY,
            "language": language,
        })
        return SubmissionReceipt(request_body=request_body, response_body=response)

    async def interpret(self, raw_response: str) -> Verdict:
        if not raw_response or not raw_response.strip():
            raise VerdictParseError("Empty review response")
        codes = policy_codes_of(raw_response)
        # an unknown code makes the whole response unreadable
        severity_for_codes(codes)
        client = await self.client()
        if client.is_content_not_allowed(raw_response):
            return Verdict(severity=ReviewStatus.BANNED, policy_codes=codes)
        if client.is_content_mature(raw_response):
            return Verdict(severity=ReviewStatus.MATURE, policy_codes=codes)
        return Verdict(severity=ReviewStatus.CLEAN, policy_codes=codes)


class HttpClassificationClient:
    """Classification provider client over HTTPS"""

    def __init__(self, base_url: str, api_key: str, timeout: float = CLASSIFIER_TIMEOUT, session: Optional[requests.Session] = None):
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post_job(self, request_body: str, callback_url: str) -> str:
        response = self.session.post(
            f"{self.base_url}/jobs",
            data=request_body,
            params={"callbackUrl": callback_url},
            headers={"Content-Type": "application/json", "X-Api-Key": self.api_key},
            timeout=self.timeout,
        )
        response.raise_for_status()
        job_id = response.json().get("jobId")
        if not job_id:
            raise ModerationError("Classification provider returned no job id")
        return job_id

    async def submit_async_job(self, request_body: str, callback_url: str) -> str:
        return await asyncio.to_thread(self._post_job, request_body, callback_url)
