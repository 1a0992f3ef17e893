"""Shared defaults for stagecraft."""

STATE_DIR = ".stagecraft"
WORKFLOWS_DIR = "workflows"
TEMPLATES_DIR = "workflow-templates"
TEMPLATE_VERSIONS_DIR = "workflow-template-versions"
SESSIONS_DIR = "sessions"

DEFAULT_MAX_ITERATIONS = 50
DEFAULT_MAX_NESTING_DEPTH = 2
DEFAULT_APPROVAL_TIMEOUT_MS = 5 * 60 * 1000

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 30000

COST_WARNING_THRESHOLD = 0.8
