"""
monstack Constants

Centralized constants for magic values, defaults, and configuration.
"""

# Stack directory layout (relative to the stack root)
CONFIG_FILE = "monstack.yml"
ENV_FILE = ".env"
DEFAULT_INVENTORY = "inventory/hosts.ini"
DEFAULT_GROUP = "monitoring_hosts"
DEFAULT_VAULT_PASSWORD_FILE = ".vault_pass"
DEFAULT_TEMPLATES_DIR = "templates"
DEFAULT_RUNNER_DIR = "runner"
DEFAULT_LOG_DIR = "logs"

# Environment variables
STACK_DIR_ENV = "MONSTACK_DIR"
ENV_PREFIX = "MONSTACK_"

# Target layout
DEFAULT_BASE_DIR = "/opt/monitoring"
RELEASES_DIR = "releases"
CURRENT_LINK = "current"
LOCK_FILE = ".deploy.lock"
MANIFEST_FILE = ".release.json"
RENDERED_ENV_FILE = ".env"
COMPOSE_FILE = "docker-compose.yml"
RUNNER_DIR = "runner"

# Release identifiers
RELEASE_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
MAX_STAGING_ATTEMPTS = 100

# Compose / service account
DEFAULT_COMPOSE_PROJECT = "monitoring"
DEFAULT_COMPOSE_COMMAND = "docker compose"
DEFAULT_STACK_USER = "monitoring"
RUNNER_COMPOSE_PROJECT = "github-runner"
DEFAULT_SERVICES = [
    "caddy",
    "prometheus",
    "grafana",
    "graylog",
    "opensearch",
    "mongodb",
    "registry",
]

# Retention / health defaults and bounds
DEFAULT_KEEP_RELEASES = 3
MAX_KEEP_RELEASES = 50
DEFAULT_HEALTH_TIMEOUT = 120
MAX_HEALTH_TIMEOUT = 3600
DEFAULT_HEALTH_POLL_INTERVAL = 5

# SSH
DEFAULT_SSH_COMMAND = "ssh"
DEFAULT_SSH_PORT = 22
MIN_SSH_VERSION = "7.6"
SSH_CONNECTION_TIMEOUT = 10
MAX_CONNECTION_TIMEOUT = 300
SSH_CONTROL_PERSIST = 60
DEFAULT_COMMAND_TIMEOUT = 600
ANSIBLE_PYTHON_INTERPRETER = "/usr/bin/python3"

# Log Configuration
LOG_DATE_FORMAT = "%Y-%m-%d"

# Secret document
VAULT_HEADER = "$MONSTACK_VAULT;1.0;SCRYPT-FERNET"
SECRET_FILE_PERMISSIONS = 0o600
MIN_OPERATOR_PASSWORD_LENGTH = 12
OPENSEARCH_PASSWORD_LENGTH = 32
OPENSEARCH_PASSWORD_ALPHABET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789_@#%^"
)
BCRYPT_ROUNDS = 14

# Rendered file permissions
RENDERED_FILE_PERMISSIONS = 0o640
RENDERED_ENV_PERMISSIONS = 0o600

# Secret masking (log files, listings)
REDACTED = "********"
MIN_REDACTED_LENGTH = 4
SENSITIVE_KEYWORDS = [
    "PASSWORD",
    "TOKEN",
    "SECRET",
    "KEY",
    "HASH",
]

# Runner prerequisites
RUNNER_ORG_VAR = "github_org_url"
RUNNER_TOKEN_KEY = "vault_github_runner_token"
RUNNER_ENV_MAPPING = "runner_env"
RUNNER_TOKEN_URL = "https://github.com/<org>/settings/actions/runners/new"
