import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Application environment
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
DEBUG = ENVIRONMENT == "development"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Application settings
APP_NAME = "Lynxx Club Messaging API"
APP_VERSION = "1.0.0"

# Database settings
DATABASE_URL = os.getenv("DATABASE_URL")
TESTING = os.getenv("TESTING", "false").lower() == "true"

# Descope settings
DESCOPE_PROJECT_ID = os.getenv("DESCOPE_PROJECT_ID", "")
DESCOPE_JWT_LEEWAY = int(os.getenv("DESCOPE_JWT_LEEWAY", "60"))  # JWT clock-skew tolerance in seconds
DESCOPE_JWT_LEEWAY_FALLBACK = int(os.getenv("DESCOPE_JWT_LEEWAY_FALLBACK", "120"))
DESCOPE_MANAGEMENT_KEY = os.getenv("DESCOPE_MANAGEMENT_KEY", "")

# Redis settings
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# SSE settings
SSE_HEARTBEAT_SECONDS = int(os.getenv("SSE_HEARTBEAT_SECONDS", "25"))
SSE_MAX_MISSED_HEARTBEATS = int(os.getenv("SSE_MAX_MISSED_HEARTBEATS", "2"))
SSE_RETRY_MS = int(os.getenv("SSE_RETRY_MS", "5000"))
SSE_ALLOW_QUERY_TOKEN = os.getenv("SSE_ALLOW_QUERY_TOKEN", "true").lower() == "true"
SSE_MAX_CONCURRENT_STREAMS_PER_USER = int(os.getenv("SSE_MAX_CONCURRENT_STREAMS_PER_USER", "5"))

# Pusher Settings
PUSHER_ENABLED = os.getenv("PUSHER_ENABLED", "true").lower() == "true"
PUSHER_APP_ID = os.getenv("PUSHER_APP_ID", "")
PUSHER_KEY = os.getenv("PUSHER_KEY", "")
PUSHER_SECRET = os.getenv("PUSHER_SECRET", "")
PUSHER_CLUSTER = os.getenv("PUSHER_CLUSTER", "us2")

# OneSignal Settings
ONESIGNAL_ENABLED = os.getenv("ONESIGNAL_ENABLED", "true").lower() == "true"
ONESIGNAL_APP_ID = os.getenv("ONESIGNAL_APP_ID", "")
ONESIGNAL_REST_API_KEY = os.getenv("ONESIGNAL_REST_API_KEY", "")
ONESIGNAL_MAX_PLAYERS_PER_USER = int(os.getenv("ONESIGNAL_MAX_PLAYERS_PER_USER", "10"))
NOTIFICATION_ACTIVITY_THRESHOLD_SECONDS = int(
    os.getenv("NOTIFICATION_ACTIVITY_THRESHOLD_SECONDS", "30")
)  # Skip system push if the recipient was active this recently

# AWS chat image storage
AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID")
AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY")
AWS_REGION = os.getenv("AWS_REGION", "us-east-2")
CHAT_IMAGE_BUCKET = os.getenv("CHAT_IMAGE_BUCKET", "chat-images")
CHAT_IMAGE_MAX_MB = int(os.getenv("CHAT_IMAGE_MAX_MB", "10"))
CHAT_IMAGE_URL_EXPIRY_SECONDS = int(os.getenv("CHAT_IMAGE_URL_EXPIRY_SECONDS", "3600"))

# Messaging Settings
MESSAGING_ENABLED = os.getenv("MESSAGING_ENABLED", "true").lower() == "true"
MESSAGE_MAX_LENGTH = int(os.getenv("MESSAGE_MAX_LENGTH", "2000"))
MESSAGE_SANITIZE_ENABLED = os.getenv("MESSAGE_SANITIZE_ENABLED", "true").lower() == "true"
MESSAGES_MAX_PER_MINUTE = int(os.getenv("MESSAGES_MAX_PER_MINUTE", "30"))
MESSAGE_HISTORY_LIMIT = int(os.getenv("MESSAGE_HISTORY_LIMIT", "100"))
MESSAGE_SEND_TIMEOUT_SECONDS = int(os.getenv("MESSAGE_SEND_TIMEOUT_SECONDS", "10"))

# Pricing (credits per message, cash value in cents)
MESSAGE_TEXT_CREDITS = int(os.getenv("MESSAGE_TEXT_CREDITS", "5"))
MESSAGE_IMAGE_CREDITS = int(os.getenv("MESSAGE_IMAGE_CREDITS", "10"))
CREDIT_VALUE_MINOR = int(os.getenv("CREDIT_VALUE_MINOR", "10"))  # 1 credit = $0.10
CREATOR_SHARE_PERCENT = int(os.getenv("CREATOR_SHARE_PERCENT", "70"))
