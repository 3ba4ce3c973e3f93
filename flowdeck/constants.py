"""Default values shared across flowdeck modules."""

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_RETRY_JITTER = 0.25
DEFAULT_MAX_ITERATIONS = 10
DEFAULT_RANKING_RESULTS = 10

# Limits applied when handing shared results to AI prompts
SANITIZE_MAX_DEPTH = 10
SANITIZE_MAX_ITEMS = 20

DEFAULT_CONFIG_PATH = "flowdeck.yaml"
