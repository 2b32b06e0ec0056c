"""Text canonicalisation applied before block fingerprinting."""

from __future__ import annotations

import re
import unicodedata

from critic.transcriptions.models import NormalizationPolicy

_SPACE_RE = re.compile(r"\s+")


def normalize_text(text: str, policy: NormalizationPolicy) -> str:
    """Canonicalise ``text`` so equal-looking transcriptions compare equal.

    Line endings are unified first, then the Unicode normal form is applied.
    Diacritic stripping and casefolding are opt-in because pointing and case
    are often meaningful in critical transcription.
    """

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = unicodedata.normalize(policy.unicode_form, text)
    if policy.strip_diacritics:
        decomposed = unicodedata.normalize("NFD", text)
        text = "".join(char for char in decomposed if not unicodedata.combining(char))
        text = unicodedata.normalize(policy.unicode_form, text)
    if policy.collapse_whitespace:
        text = _SPACE_RE.sub(" ", text).strip()
    if policy.casefold:
        text = text.casefold()
    return text


def normalize_optional(text: str | None, policy: NormalizationPolicy) -> str | None:
    if text is None:
        return None
    return normalize_text(text, policy)
