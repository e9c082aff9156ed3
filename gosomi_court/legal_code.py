"""
Legal code lookup.

The code itself is authored data (laws/legal_code.json); this module only
loads it and picks which laws a verdict prompt should quote.
"""

import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_LEGAL_CODE_PATH = Path(__file__).parent / "laws" / "legal_code.json"


@lru_cache()
def load_legal_code(path: Optional[str] = None) -> Dict[str, Any]:
    """Load and cache the legal code JSON."""
    code_path = Path(path) if path else DEFAULT_LEGAL_CODE_PATH
    with open(code_path, "r", encoding="utf-8") as f:
        code = json.load(f)
    logger.info(f"Loaded legal code from {code_path} ({len(code.get('legal_code', []))} laws)")
    return code


def _norm(s: str) -> str:
    return re.sub(r"\s+", " ", str(s or "").lower())


def pick_top_laws(
    laws: List[Dict[str, Any]],
    texts: Iterable[str],
    top_n: int = 3,
) -> List[Dict[str, Any]]:
    """
    Rank laws by keyword hits in the case texts.

    A keyword hit scores 3, a literal mention of the category scores 2.
    Laws with no hits are dropped.
    """
    hay = _norm(" ".join(t for t in texts if t))

    scored = []
    for index, law in enumerate(laws):
        score = 0
        for kw in law.get("keywords", []):
            k = _norm(kw)
            if k and k in hay:
                score += 3
        if _norm(law.get("category", "")) in hay:
            score += 2
        if score > 0:
            scored.append((score, index, law))

    # stable: ties keep file order
    scored.sort(key=lambda x: (-x[0], x[1]))
    return [law for _, _, law in scored[:top_n]]


class LegalCodeProvider:
    """Selects the rules quoted to the judge for a case."""

    def __init__(self, code: Optional[Dict[str, Any]] = None):
        if code is None:
            code = load_legal_code(get_settings().legal_code_path)
        self.code = code

    @property
    def laws(self) -> List[Dict[str, Any]]:
        return self.code.get("legal_code", [])

    def get(self, law_type: Optional[str]) -> Optional[Dict[str, Any]]:
        if not law_type:
            return None
        for law in self.laws:
            if law.get("id") == law_type:
                return law
        return None

    def rules_for(self, law_type: Optional[str], texts: Iterable[str] = ()) -> Dict[str, Any]:
        """
        Rules for the prompt: the tagged category when known, otherwise the
        best keyword matches, otherwise the whole code.
        """
        law = self.get(law_type)
        if law is not None:
            selected = [law]
        else:
            selected = pick_top_laws(self.laws, texts) or self.laws

        return {"name": self.code.get("name", ""), "legal_code": selected}
