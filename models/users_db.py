# models/users_db.py
from __future__ import annotations
import re
from typing import Optional
from datetime import datetime, timezone

from werkzeug.security import generate_password_hash, check_password_hash
from sqlalchemy import select, func
from models.base import session_scope
from models.schema import User, Organization, Membership

USERNAME_RX = re.compile(r"^[a-z0-9._-]{3,40}$")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def get_user(username: str) -> Optional[dict]:
    if not username:
        return None
    with session_scope() as s:
        u = s.get(User, username)
        if not u:
            return None
        return {
            "username": u.username,
            "email": u.email,
            "password_hash": u.password_hash,
            "role": u.role,
            "created_at": u.created_at,
        }


def create_user(username: str, password: str, role: str = "user",
                email: str | None = None) -> bool:
    if not username or not password or role not in {"user", "admin"}:
        return False
    if not USERNAME_RX.match(username.strip().lower()):
        return False
    with session_scope() as s:
        if s.get(User, username):
            return False
        s.add(User(
            username=username.strip(),
            email=email,
            password_hash=generate_password_hash(password),
            role=role,
            created_at=_now_utc(),
        ))
    return True


def verify_password(username: str, password: str) -> bool:
    if not username:
        return False
    with session_scope() as s:
        u = s.get(User, username)
        return bool(u and check_password_hash(u.password_hash, password))


# --- organizations & memberships

def create_organization(name: str, owner: str) -> int:
    """Create an org and make its owner an admin member. Returns the org id."""
    with session_scope() as s:
        org = Organization(name=name.strip(), owner_username=owner)
        s.add(org)
        s.flush()
        s.add(Membership(username=owner,
              organization_id=org.id, role="admin"))
        return org.id


def add_member(org_id: int, username: str, role: str = "member") -> bool:
    if role not in {"admin", "member"}:
        return False
    with session_scope() as s:
        exists = s.execute(select(Membership.id).where(
            Membership.organization_id == org_id,
            Membership.username == username,
        )).first()
        if exists:
            return False
        s.add(Membership(username=username,
              organization_id=org_id, role=role))
    return True


def list_memberships(username: str) -> list[dict]:
    with session_scope() as s:
        rows = s.execute(
            select(Membership.organization_id, Membership.role, Organization.name)
            .join(Organization, Organization.id == Membership.organization_id)
            .where(Membership.username == username)
            .order_by(Membership.organization_id)
        ).all()
        return [{"organization_id": r.organization_id, "name": r.name, "role": r.role}
                for r in rows]


def get_member_role(username: str, org_id: int) -> Optional[str]:
    with session_scope() as s:
        return s.execute(select(Membership.role).where(
            Membership.username == username,
            Membership.organization_id == org_id,
        )).scalar_one_or_none()


def count_billable_members(owner: str) -> int:
    """Distinct members across every organization the user owns."""
    with session_scope() as s:
        return int(s.execute(
            select(func.count(func.distinct(Membership.username)))
            .join(Organization, Organization.id == Membership.organization_id)
            .where(Organization.owner_username == owner)
        ).scalar_one() or 0)
