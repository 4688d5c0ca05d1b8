"""Category -> HS6 resolution for quotes."""

from __future__ import annotations

import logging
import re
from typing import Optional

from sqlalchemy.orm import Session

from landedcost.db.models import Category
from landedcost.errors import UnknownEntity

logger = logging.getLogger(__name__)

_HS6_RE = re.compile(r"^\d{6}$")
_SEPARATORS_RE = re.compile(r"[\s.\-]")


def normalize_hs6(code: Optional[str]) -> Optional[str]:
    """Strip dots, dashes and spaces; ``None`` unless exactly six digits remain."""
    digits = _SEPARATORS_RE.sub("", str(code or ""))
    return digits if _HS6_RE.match(digits) else None


def resolve_hs6(session: Session, category_key: Optional[str], user_hs6: Optional[str] = None) -> str:
    """A caller-supplied HS6 wins; otherwise the category's default.

    Raises:
        UnknownEntity: malformed ``user_hs6`` or unknown ``category_key``
    """
    if user_hs6 not in (None, ""):
        hs6 = normalize_hs6(user_hs6)
        if hs6 is None:
            raise UnknownEntity("hs6", user_hs6)
        return hs6

    key = (category_key or "").strip()
    category = session.get(Category, key) if key else None
    if category is None:
        raise UnknownEntity("category", category_key)
    logger.debug("Category %s resolved to HS6 %s", key, category.default_hs6)
    return category.default_hs6
