from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from docgate.models import ApiKey, utcnow

ROLE_ORDER = {
    "viewer": 1,
    "reviewer": 2,
    "approver": 3,
    "admin": 4,
}


@dataclass
class AuthContext:
    api_key_id: str
    owner: str
    role: str


def hash_api_key(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class AuthService:
    def ensure_default_api_keys(self, session: Session, seed_keys: Iterable[tuple[str, str, str]]) -> None:
        for owner, role, plaintext_key in seed_keys:
            if role not in ROLE_ORDER:
                raise ValueError(f"Unknown API role: {role}")
            key_hash = hash_api_key(plaintext_key)
            row = session.scalar(select(ApiKey).where(ApiKey.key_hash == key_hash))
            if row:
                if not row.enabled:
                    row.enabled = True
                continue
            session.add(ApiKey(key_hash=key_hash, owner=owner, role=role, enabled=True))

    def authenticate(self, session: Session, plaintext_key: str | None) -> AuthContext | None:
        if not plaintext_key:
            return None
        key_hash = hash_api_key(plaintext_key)
        row = session.scalar(select(ApiKey).where(ApiKey.key_hash == key_hash, ApiKey.enabled.is_(True)))
        if not row:
            return None
        row.last_used_at = utcnow()
        return AuthContext(api_key_id=row.id, owner=row.owner, role=row.role)

    def role_allows(self, current_role: str, min_role: str) -> bool:
        return ROLE_ORDER.get(current_role, 0) >= ROLE_ORDER.get(min_role, 0)
