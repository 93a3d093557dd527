"""
Secret Document Model
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from monstack.constants import REDACTED, SENSITIVE_KEYWORDS


@dataclass
class SecretDocument:
    """Decrypted view of the secret document. Lives only in memory."""

    path: Path
    values: Dict[str, str] = field(default_factory=dict)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get a secret value."""
        return self.values.get(key, default)

    def has(self, key: str) -> bool:
        """Check if secret exists."""
        return key in self.values

    def keys(self) -> list:
        return sorted(self.values)

    def masked(self) -> Dict[str, str]:
        """Values with anything that looks sensitive replaced by asterisks."""
        masked = {}
        for key, value in self.values.items():
            if any(word in key.upper() for word in SENSITIVE_KEYWORDS):
                masked[key] = REDACTED
            else:
                masked[key] = value
        return masked

    def __len__(self) -> int:
        return len(self.values)

    def __repr__(self) -> str:
        # Never leak values through repr
        return f"SecretDocument(path={self.path}, count={len(self.values)})"
