# Overview: Read-only lookups into the branch directory, product catalog, and user context.

"""
Directory lookups used by the stock workflows.

Branches, products and users are maintained outside the stock core (CLI
bootstrap only); workflows treat them as read-only and resolve them here
so a missing reference always surfaces as NotFoundError.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ForbiddenError, NotFoundError
from ..extensions import db
from ..models import Branch, Product, User
from ..models.auth import ROLE_ADMIN, ROLE_MECHANIC


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation, as seen by the authorization rules."""
    user_id: int
    role: str
    branch_id: int | None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_mechanic(self) -> bool:
        return self.role == ROLE_MECHANIC

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, role=user.role, branch_id=user.branch_id)


def resolve_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if branch is None or not branch.is_active:
        raise NotFoundError(f"Branch {branch_id} not found")
    return branch


def resolve_product(product_id: int, *, require_active: bool = True) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if require_active and not product.is_active:
        raise NotFoundError(f"Product {product.name} is not active")
    return product


def resolve_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError(f"User {user_id} not found")
    return user


def ensure_branch_access(actor: Actor, branch_id: int) -> None:
    """Non-admins may only act on their own branch."""
    if actor.is_admin:
        return
    if actor.branch_id is None or actor.branch_id != branch_id:
        raise ForbiddenError("You do not have access to this branch")


def scoped_branch_filter(actor: Actor, requested_branch_id: int | None) -> int | None:
    """
    Branch filter for list queries.

    Admins may filter by any branch (or none); everyone else is pinned to
    their own branch regardless of what they asked for.
    """
    if actor.is_admin:
        return requested_branch_id
    if actor.branch_id is None:
        raise ForbiddenError("No branch assigned to this account")
    if requested_branch_id is not None and requested_branch_id != actor.branch_id:
        raise ForbiddenError("You do not have access to this branch")
    return actor.branch_id
