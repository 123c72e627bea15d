"""Best-effort recruiter contact address for a posting."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

from applydispatch.models import JobPosting

_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")


@dataclass(frozen=True)
class ContactAddress:
    email: str
    synthesized: bool = False  # guessed from the company name, lower confidence


class ContactExtractor(Protocol):
    def extract(self, posting: JobPosting) -> ContactAddress:
        ...


def slugify_company(company: str) -> str:
    return re.sub(r"[^a-z0-9]", "", company.lower())


class RegexContactExtractor:
    """First address found in the description, else ``<local>@<company>.<tld>``.

    The fallback is a guess; nothing checks that the domain exists.
    """

    def __init__(self, fallback_local_part: str = "recrutement", fallback_tld: str = "tn") -> None:
        self._local = fallback_local_part
        self._tld = fallback_tld

    def extract(self, posting: JobPosting) -> ContactAddress:
        match = _EMAIL_RE.search(posting.description or "")
        if match:
            return ContactAddress(match.group(0))
        slug = slugify_company(posting.company) or "unknown"
        return ContactAddress(f"{self._local}@{slug}.{self._tld}", synthesized=True)
