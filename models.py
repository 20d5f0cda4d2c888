from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum

class ReviewStatus(str, Enum):
    ACTIVE = "active"
    CLEAN = "clean"
    MATURE = "mature"
    BANNED = "banned"
    FAILED = "failed"

class ModerationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

class ContentType(str, Enum):
    TOPIC = "topic"
    COMMENT = "comment"
    REPLY = "reply"
    UNKNOWN = "unknown"

class ReportType(str, Enum):
    CONTENT = "content"
    IMAGE = "image"
    USER = "user"

class BlobType(str, Enum):
    UNKNOWN = "unknown"
    IMAGE = "image"
    VIDEO = "video"
    CUSTOM = "custom"

class ImageType(str, Enum):
    USER_PHOTO = "user_photo"
    CONTENT_BLOB = "content_blob"
    APP_ICON = "app_icon"

class ReportReason(str, Enum):
    SPAM = "spam"
    CHILD_ENDANGERMENT = "child_endangerment_exploitation"
    THREATS = "threats_cyberbullying_harassment"
    OFFENSIVE_CONTENT = "offensive_content"
    MALWARE = "virus_spyware_malware"
    CONTENT_INFRINGEMENT = "content_infringement"
    OTHER = "other"

class ReportFeed(str, Enum):
    FOR_CONTENT = "for_content"
    FOR_USER = "for_user"
    FROM_USER = "from_user"
    FOR_APP = "for_app"

class JobType(str, Enum):
    CONTENT = "content"
    IMAGE = "image"
    USER = "user"
    CONTENT_REPORT = "content_report"
    USER_REPORT = "user_report"

# Entities owned by the content, user and image stores

class Topic(BaseModel):
    handle: str
    app_handle: str
    user_handle: str
    title: str = ""
    text: str = ""
    blob_type: BlobType = BlobType.UNKNOWN
    blob_handle: str = ""
    categories: str = ""
    review_status: ReviewStatus = ReviewStatus.ACTIVE
    last_updated_time: datetime = Field(default_factory=datetime.utcnow)

class Comment(BaseModel):
    handle: str
    topic_handle: str
    app_handle: str
    user_handle: str
    text: str = ""
    blob_type: BlobType = BlobType.UNKNOWN
    blob_handle: str = ""
    review_status: ReviewStatus = ReviewStatus.ACTIVE
    last_updated_time: datetime = Field(default_factory=datetime.utcnow)

class Reply(BaseModel):
    handle: str
    comment_handle: str
    topic_handle: str
    app_handle: str
    user_handle: str
    text: str = ""
    language: Optional[str] = None
    review_status: ReviewStatus = ReviewStatus.ACTIVE
    last_updated_time: datetime = Field(default_factory=datetime.utcnow)

class UserProfile(BaseModel):
    user_handle: str
    app_handle: str
    first_name: str = ""
    last_name: str = ""
    bio: str = ""
    photo_handle: str = ""
    review_status: ReviewStatus = ReviewStatus.ACTIVE
    last_updated_time: datetime = Field(default_factory=datetime.utcnow)

class ImageMetadata(BaseModel):
    handle: str
    app_handle: str
    user_handle: str
    image_type: ImageType = ImageType.CONTENT_BLOB
    review_status: ReviewStatus = ReviewStatus.ACTIVE

class ImageBlob(BaseModel):
    handle: str
    data: bytes = b""
    size: int = 0

class ImageSize(BaseModel):
    id: str
    width: int

# Moderation bookkeeping

class ModerationTransaction(BaseModel):
    handle: str
    app_handle: str
    kind: ReportType
    provider: str
    submitted_at: datetime = Field(default_factory=datetime.utcnow)
    request_body: str = ""
    provider_job_id: Optional[str] = None
    callback_url: str
    responded_at: Optional[datetime] = None
    response_body: Optional[str] = None

class ModerationRecord(BaseModel):
    handle: str
    app_handle: str
    content_type: ContentType = ContentType.UNKNOWN
    content_handle: Optional[str] = None
    user_handle: str
    image_handle: Optional[str] = None
    image_type: ImageType = ImageType.CONTENT_BLOB
    status: ModerationStatus = ModerationStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.utcnow)

class ContentReport(BaseModel):
    report_handle: str
    app_handle: str
    content_type: ContentType
    content_handle: str
    content_user_handle: str
    reporting_user_handle: str
    reason: ReportReason
    created_at: datetime = Field(default_factory=datetime.utcnow)
    has_complained_before: bool = False

class UserReport(BaseModel):
    report_handle: str
    app_handle: str
    reported_user_handle: str
    reporting_user_handle: str
    reason: ReportReason
    created_at: datetime = Field(default_factory=datetime.utcnow)
    has_complained_before: bool = False

class ValidationConfig(BaseModel):
    allow_mature_content: bool = True
    content_report_threshold: int = 0
    user_report_threshold: int = 0

# Provider exchange

class Submission(BaseModel):
    texts: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    callback_url: str
    reason: Optional[ReportReason] = None
    reported_at: Optional[datetime] = None

class SubmissionReceipt(BaseModel):
    request_body: str
    job_id: Optional[str] = None
    response_body: Optional[str] = None

class Verdict(BaseModel):
    failed: bool = False
    severity: Optional[ReviewStatus] = None
    policy_codes: List[str] = Field(default_factory=list)

class ModerationJob(BaseModel):
    job_type: JobType
    app_handle: str
    handle: str
    callback_url: str
    content_type: ContentType = ContentType.UNKNOWN
    content_handle: Optional[str] = None
    blob_handle: Optional[str] = None
    user_handle: Optional[str] = None
    image_type: ImageType = ImageType.CONTENT_BLOB
    dequeue_count: int = 0

# API requests

class ContentModerationRequest(BaseModel):
    content_type: ContentType
    content_handle: str
    user_handle: str

class ImageModerationRequest(BaseModel):
    image_handle: str
    user_handle: str
    image_type: ImageType = ImageType.CONTENT_BLOB

class UserModerationRequest(BaseModel):
    user_handle: str

class ContentReportRequest(BaseModel):
    report_handle: Optional[str] = None
    content_type: ContentType
    content_handle: str
    content_user_handle: str
    reporting_user_handle: str
    reason: ReportReason = ReportReason.OTHER

class UserReportRequest(BaseModel):
    report_handle: Optional[str] = None
    reported_user_handle: str
    reporting_user_handle: str
    reason: ReportReason = ReportReason.OTHER
