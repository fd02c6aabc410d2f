"""
Church slug allocation.

Slugs are derived from the church display name and are globally unique and
immutable. Collisions resolve to `<base>-2`, `<base>-3`, ... in order.
"""
from __future__ import annotations

import logging
import re
import unicodedata
import uuid
from typing import Optional

from sqlalchemy import select, insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hodos.core.database import churches
from hodos.core.errors import ValidationError, ConflictError
from hodos.models.church import Church
from hodos.models.payment import ChurchRegistration

logger = logging.getLogger("hodos.churches")

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

# Attempts at inserting after a concurrent allocator took our candidate
MAX_INSERT_ATTEMPTS = 10


def slugify(name: str) -> str:
    """
    Normalize a display name into a URL-safe slug.

    "Igreja Monte Hebrom" -> "igreja-monte-hebrom"
    "Comunhão  Batista!!" -> "comunhao-batista"
    """
    decomposed = unicodedata.normalize("NFKD", name or "")
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    slug = _NON_ALNUM.sub("-", ascii_only.casefold()).strip("-")
    if not slug:
        raise ValidationError(f"Cannot derive a slug from name: {name!r}")
    return slug


def _slug_taken(session: Session, slug: str) -> bool:
    return session.execute(
        select(churches.c.id).where(churches.c.slug == slug)
    ).first() is not None


def _candidate(base: str, n: int) -> str:
    return base if n == 1 else f"{base}-{n}"


def allocate_slug(session: Session, name: str, start: int = 1) -> str:
    """Return the first unassigned slug for name, starting at suffix `start`."""
    base = slugify(name)
    n = start
    while _slug_taken(session, _candidate(base, n)):
        n += 1
    return _candidate(base, n)


def _suffix_of(slug: str, base: str) -> int:
    if slug == base:
        return 1
    return int(slug[len(base) + 1:])


def create_church_with_unique_slug(
    session: Session,
    registration: ChurchRegistration,
    *,
    church_id: Optional[str] = None,
) -> Church:
    """
    Insert an active church with a freshly allocated slug.

    The slug unique constraint is the arbiter between concurrent allocators:
    each insert runs in a SAVEPOINT, and losing the race rolls back only that
    savepoint before retrying with the next suffix.
    """
    cid = church_id or str(uuid.uuid4())
    base = slugify(registration.church_name)
    start = 1

    for _ in range(MAX_INSERT_ATTEMPTS):
        slug = allocate_slug(session, registration.church_name, start=start)
        values = dict(
            id=cid,
            slug=slug,
            name=registration.church_name,
            cnpj=registration.cnpj or None,
            cpf=registration.cpf or None,
            address=registration.address,
            responsible_name=registration.responsible_name,
            responsible_email=str(registration.responsible_email),
            responsible_phone=registration.responsible_phone,
            is_active=True,
            is_public=False,
            subscription_id=None,
        )
        try:
            with session.begin_nested():
                session.execute(insert(churches).values(**values))
        except IntegrityError:
            logger.info(f"[churches] slug {slug} taken concurrently, retrying")
            start = _suffix_of(slug, base) + 1
            continue

        values.pop("is_public")
        return Church(**values)

    raise ConflictError(f"Could not allocate a unique slug for {registration.church_name!r}")
