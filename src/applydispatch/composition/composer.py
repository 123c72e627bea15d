"""Turn a (job, profile, template) triple into a ready-to-send draft."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Awaitable, Callable, Sequence

from applydispatch.composition.contact import ContactExtractor, RegexContactExtractor
from applydispatch.composition.generator import ContentGenerator
from applydispatch.exceptions import GenerationError, NoTemplateError
from applydispatch.models import ApplicationDraft, ApplicationTemplate, JobPosting, UserProfile

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")
_TOP_SKILLS = 5

_COVER_LETTER_PROMPT = """\
Write a professional cover letter in French for the position "{job_title}" at "{company}".

Candidate profile:
- Name: {first_name} {last_name}
- Title: {title}
- Experience: {experience_count} position(s)
- Main skills: {skills}

The letter must be:
- Tailored to the company and the position
- Professional but genuine
- Between 200 and 300 words
- Structured as introduction, body, conclusion
- Suited to the Tunisian job market

Return only the letter body, without greeting or signature."""


def select_template(templates: Sequence[ApplicationTemplate]) -> ApplicationTemplate:
    """Pick the default active template, else the first active one."""
    active = [t for t in templates if t.is_active]
    for template in active:
        if template.is_default:
            return template
    if active:
        return active[0]
    raise NoTemplateError("No active application template found.")


def render_placeholders(pattern: str, values: dict[str, str]) -> str:
    """Substitute ``{name}`` placeholders; unknown ones are left as written."""
    return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), pattern)


def build_cover_letter_prompt(job: JobPosting, profile: UserProfile) -> str:
    skills = ", ".join(profile.skills[:_TOP_SKILLS]) or "Not specified"
    return _COVER_LETTER_PROMPT.format(
        job_title=job.title,
        company=job.company,
        first_name=profile.first_name,
        last_name=profile.last_name,
        title=profile.title or "Not specified",
        experience_count=profile.experience_count,
        skills=skills,
    )


class ApplicationComposer:
    """Composes drafts with the content generator.

    A failed or empty generation is retried ``max_retries`` times with
    exponential backoff starting at ``retry_base_delay`` seconds.
    """

    def __init__(
        self,
        generator: ContentGenerator,
        contact_extractor: ContactExtractor | None = None,
        attachments: Sequence[str] = ("cv.pdf",),
        max_retries: int = 2,
        retry_base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._generator = generator
        self._contacts = contact_extractor or RegexContactExtractor()
        self._attachments = tuple(attachments)
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._sleep = sleep

    async def compose(
        self,
        job: JobPosting,
        profile: UserProfile,
        template: ApplicationTemplate,
    ) -> ApplicationDraft:
        cover_letter = await self._generate_cover_letter(job, profile)
        values = {
            "jobTitle": job.title,
            "company": job.company,
            "firstName": profile.first_name,
            "lastName": profile.last_name,
            "phone": profile.phone,
            "email": profile.email,
            "coverLetter": cover_letter,
        }
        contact = self._contacts.extract(job)
        if contact.synthesized:
            logger.info("No contact address in posting %s; guessed %s.", job.id, contact.email)
        return ApplicationDraft(
            job_id=job.id,
            subject=render_placeholders(template.subject_template, values),
            body=render_placeholders(template.body_template, values).strip(),
            to_email=contact.email,
            attachment_refs=self._attachments,
            contact_synthesized=contact.synthesized,
            cover_letter=cover_letter,
        )

    async def _generate_cover_letter(self, job: JobPosting, profile: UserProfile) -> str:
        prompt = build_cover_letter_prompt(job, profile)
        attempts = self._max_retries + 1
        last_error = ""
        for attempt in range(1, attempts + 1):
            try:
                result = await self._generator.generate(prompt)
                content = result.content.strip()
                if content:
                    return content
                last_error = "empty content"
            except GenerationError as exc:
                last_error = str(exc)
            logger.warning(
                "Cover letter generation for %s failed (attempt %d/%d): %s",
                job.id,
                attempt,
                attempts,
                last_error,
            )
            if attempt < attempts:
                await self._sleep(self._retry_base_delay * 2 ** (attempt - 1))
        raise GenerationError(f"Cover letter generation failed for job {job.id}: {last_error}")
