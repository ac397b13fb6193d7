API_VERSION_HEADER = "X-WedAI-Version"

# Admin token for analytics, bonus awards and direct payment intake
ADMIN_TOKEN_HEADER = "X-Admin-Token"

# JWT Configuration
JWT_ALGORITHM = "HS256"

# Anonymous session token, minted on first contact
SESSION_TOKEN_HEADER = "X-Session-Token"
SESSION_COOKIE_NAME = "session_token"
SESSION_COOKIE_MAX_AGE_SECONDS = 365 * 24 * 3600

# Client hints combined into the device signal hash
VIEWPORT_HEADER = "X-Viewport"
TIMEZONE_HEADER = "X-Timezone"

# Generation request limits
MAX_PROMPT_LENGTH = 4000
MAX_REQUEST_ID_LENGTH = 128

# Pagination
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
