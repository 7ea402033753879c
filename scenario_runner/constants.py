"""Step actions, event types, log levels, and CAPTCHA markers."""

# ── Step Actions ─────────────────────────────────────────────────────────────

ACTION_NAVIGATE = "navigate"
ACTION_FILL = "fill"
ACTION_CLICK = "click"
ACTION_WAIT_FOR_SELECTOR = "waitForSelector"
ACTION_EXPECT = "expect"

# Fields each action cannot run without
REQUIRED_STEP_FIELDS = {
    ACTION_NAVIGATE: ("url",),
    ACTION_FILL: ("selector", "value"),
    ACTION_CLICK: ("selector",),
    ACTION_WAIT_FOR_SELECTOR: ("selector",),
    ACTION_EXPECT: ("selector",),
}

# ── Real-time Channel Messages ───────────────────────────────────────────────

EVENT_EXECUTION_UPDATE = "execution_update"
EVENT_MANUAL_VERIFICATION_REQUIRED = "manual_verification_required"
EVENT_EXECUTION_COMPLETE = "execution_complete"
EVENT_EXECUTION_ERROR = "execution_error"

MSG_MANUAL_VERIFICATION_COMPLETE = "manual_verification_complete"
MSG_PING = "ping"
MSG_PONG = "pong"
MSG_ERROR = "error"

# ── Session Log Levels ───────────────────────────────────────────────────────

LOG_INFO = "info"
LOG_SUCCESS = "success"
LOG_WARNING = "warning"
LOG_ERROR = "error"

# ── CAPTCHA Detection ────────────────────────────────────────────────────────

CAPTCHA_SELECTORS = [
    ("iframe[src*='hcaptcha']", "hcaptcha"),
    ("iframe[src*='recaptcha']", "recaptcha"),
    ("#cf-turnstile", "cloudflare_turnstile"),
    (".cf-challenge", "cloudflare_challenge"),
    ("[data-captcha]", "captcha"),
]
