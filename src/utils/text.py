"""
Text helpers for portal data (Portuguese labels arrive with and without accents).
"""
import unicodedata
from typing import Optional


def fold_accents(value: Optional[str]) -> str:
    """Lower-case and strip accents ("Média" -> "media"). None -> ""."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()
