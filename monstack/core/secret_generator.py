"""Secret generation for the monitoring stack services"""

import hashlib
import secrets
from dataclasses import dataclass
from typing import Dict

import bcrypt
import yaml

from monstack.constants import (
    BCRYPT_ROUNDS,
    MIN_OPERATOR_PASSWORD_LENGTH,
    OPENSEARCH_PASSWORD_ALPHABET,
    OPENSEARCH_PASSWORD_LENGTH,
)
from monstack.exceptions import ValidationError


@dataclass
class OperatorPasswords:
    """Passwords the operator chooses; everything else is random."""

    graylog: str
    grafana: str
    prometheus: str


def validate_password(label: str, password: str) -> None:
    if len(password) < MIN_OPERATOR_PASSWORD_LENGTH:
        raise ValidationError(
            f"{label} password must be at least {MIN_OPERATOR_PASSWORD_LENGTH} characters"
        )


def random_hex(num_bytes: int = 48) -> str:
    """Hex secret; 48 bytes gives the 96 characters Graylog expects."""
    return secrets.token_hex(num_bytes)


def random_password(
    length: int = OPENSEARCH_PASSWORD_LENGTH, alphabet: str = OPENSEARCH_PASSWORD_ALPHABET
) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def sha256_hex(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def bcrypt_hash(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """bcrypt hash in the $2a$ form Caddy's basic_auth accepts."""
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds, prefix=b"2a"))
    return hashed.decode("ascii")


def generate_secrets(
    passwords: OperatorPasswords, bcrypt_rounds: int = BCRYPT_ROUNDS
) -> Dict[str, str]:
    """
    Build every vault entry the stack needs.

    Args:
        passwords: Operator-chosen admin passwords
        bcrypt_rounds: bcrypt cost for the Prometheus hash

    Returns:
        Mapping of vault keys to values

    Raises:
        ValidationError: If an operator password is too short
    """
    validate_password("Graylog admin", passwords.graylog)
    validate_password("Grafana admin", passwords.grafana)
    validate_password("Prometheus admin", passwords.prometheus)

    return {
        "vault_graylog_password_secret": random_hex(48),
        "vault_graylog_root_password_sha2": sha256_hex(passwords.graylog),
        "vault_grafana_admin_password": passwords.grafana,
        "vault_prometheus_admin_password": bcrypt_hash(passwords.prometheus, bcrypt_rounds),
        "vault_opensearch_admin_password": random_password(),
    }


def format_secrets_yaml(values: Dict[str, str]) -> str:
    """YAML block ready to paste into the vault."""
    return "---\n" + yaml.safe_dump(values, default_flow_style=False, sort_keys=False, width=1000)
