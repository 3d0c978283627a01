"""
storage/models.py -- Row-level records for the bundled SQL identity source.

These are pure data containers with zero logic. They differ from the domain
types in core/models.py only where storage needs more than the domain
exposes: a UserRecord carries the numeric row id and the password hash,
neither of which ever leaves storage/.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class UserRecord:
    username: str
    id: Optional[int] = None
    password_hash: Optional[str] = None
    attributes: dict[str, str] = field(default_factory=dict)
    disabled: bool = False
    created_at: str = ""  # ISO 8601, set by store on insert
