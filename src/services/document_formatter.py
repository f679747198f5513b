"""Merge fixed submission sections with the grounds text.

Everything here is pure: no clock, no I/O. The same metadata always yields
the same fixed sections, whatever grounds text is passed alongside it, so a
submitter can revise their grounds without touching property identifiers or
declaration wording.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date

from core.exceptions import NonEditableSectionError
from schemas.documents import (
    DEFAULT_DECLARATION,
    DeclarationTemplate,
    Section,
    SectionType,
    SubmissionDocument,
    SubmissionMetadata,
)


logger = logging.getLogger(__name__)

DOCUMENT_TITLE = "Objection to Development Application"
GROUNDS_BODY_KEY = "grounds_body"


def format_date(d: date) -> str:
    """Long Australian form, e.g. ``18 October 2026``."""
    return f"{d.day} {d.strftime('%B %Y')}"


def _header(key: str, content: str, level: int = 2) -> Section:
    return Section(key=key, type=SectionType.HEADER, content=content, level=level)


def _fixed(key: str, label: str, content: str) -> Section:
    return Section(key=key, type=SectionType.VALUE, label=label, content=content)


def _editable(key: str, label: str, content: str | None) -> Section:
    return Section(
        key=key, type=SectionType.VALUE, label=label, content=content or "", editable=True
    )


def _application_sections(meta: SubmissionMetadata) -> list[Section]:
    sections = [
        _header("title", DOCUMENT_TITLE, level=1),
        _fixed("council", "To", meta.council_name),
    ]
    if meta.council_email:
        sections.append(_fixed("council_email", "Email", meta.council_email))

    sections.append(_header("application_heading", "Application details"))
    sections.append(_fixed("site_address", "Property address", meta.site_address))
    sections.append(
        _fixed("application_number", "Application number", meta.application_number)
    )
    if meta.lot_number:
        sections.append(_fixed("lot_number", "Lot number", meta.lot_number))
    if meta.plan_number:
        sections.append(_fixed("plan_number", "Plan number", meta.plan_number))
    return sections


def _submitter_sections(meta: SubmissionMetadata) -> list[Section]:
    s = meta.submitter
    sections = [
        _header("submitter_heading", "Submitter details"),
        _editable("submitter.first_name", "First name", s.first_name),
        _editable("submitter.last_name", "Surname", s.last_name),
        _editable("submitter.residential_address", "Residential address", s.residential_address),
        _editable("submitter.suburb", "Suburb", s.suburb),
        _editable("submitter.state", "State", s.state),
        _editable("submitter.postcode", "Postcode", s.postcode),
        _editable("submitter.email", "Email address", s.email),
    ]
    if s.postal_address_same:
        sections.append(
            _editable("submitter.postal_same", "Postal address (same as above)", "Yes")
        )
    else:
        sections.append(
            _editable("submitter.postal_same", "Postal address (same as above)", "No")
        )
        sections.append(_editable("submitter.postal_address", "Postal address", s.postal_address))
        sections.append(_editable("submitter.postal_suburb", "Suburb", s.postal_suburb))
        sections.append(_editable("submitter.postal_state", "State", s.postal_state))
        sections.append(_editable("submitter.postal_postcode", "Postcode", s.postal_postcode))
        if s.postal_email:
            sections.append(_editable("submitter.postal_email", "Email address", s.postal_email))
    return sections


def _grounds_header_sections(meta: SubmissionMetadata, when: str) -> list[Section]:
    sections = [
        _header("position_heading", "Submission details"),
        _fixed("position", "Position on the development application", meta.position),
        _header("grounds_heading", "Grounds of submission"),
        Section(key="grounds_to_label", type=SectionType.LABEL, content="To:"),
    ]
    addressee = [
        line for line in (meta.recipient_name, meta.recipient_title, meta.council_name) if line
    ]
    sections.append(
        Section(key="grounds_to", type=SectionType.VALUE, content="  \n".join(addressee))
    )
    sections.append(_fixed("grounds_subject", "Subject", f"{meta.subject}, {meta.site_address}"))
    # Built from metadata only; edits to the name fields do not reach it
    sections.append(_fixed("grounds_from", "From", meta.submitter.full_name))
    sections.append(_fixed("grounds_date", "Date", when))
    return sections


def _declaration_sections(
    meta: SubmissionMetadata, declaration: DeclarationTemplate, when: str
) -> list[Section]:
    def fixed(key: str, content: str) -> Section:
        return Section(key=key, type=SectionType.DECLARATION, content=content)

    def signature(key: str, label: str, content: str) -> Section:
        return Section(
            key=key, type=SectionType.DECLARATION, label=label, content=content, editable=True
        )

    sections = [
        fixed("declaration.heading", f"## {declaration.heading}"),
        fixed("declaration.intro", declaration.intro),
    ]
    for i, statement in enumerate(declaration.statements, start=1):
        sections.append(fixed(f"declaration.statement_{i}", f"- [X] {statement}"))
    sections.append(fixed("declaration.agreement", f"**{declaration.agreement}**"))

    name = meta.submitter.full_name
    sections.append(signature("declaration.signature", "Electronic signature", name))
    sections.append(signature("declaration.date", "Date", when))
    sections.append(signature("declaration.name", "Name", name))
    return sections


def format_submission(
    metadata: SubmissionMetadata,
    grounds_body: str,
    custom_grounds: str | None = None,
    declaration: DeclarationTemplate = DEFAULT_DECLARATION,
) -> SubmissionDocument:
    """Build the canonical submission document.

    Fixed sections depend only on ``metadata`` and ``declaration``.
    """
    when = format_date(metadata.submission_date)
    sections = [
        *_application_sections(metadata),
        *_submitter_sections(metadata),
        *_grounds_header_sections(metadata, when),
        *_declaration_sections(metadata, declaration, when),
    ]
    return SubmissionDocument(
        fixed_sections=tuple(sections),
        grounds_body=grounds_body,
        custom_grounds=custom_grounds,
    )


def apply_field_edits(
    document: SubmissionDocument, edits: Mapping[str, str]
) -> SubmissionDocument:
    """Return a copy of ``document`` with user edits applied.

    Only editable sections and the grounds body accept edits; any other key
    raises ``NonEditableSectionError`` and nothing is applied.
    """
    by_key = {s.key: s for s in document.fixed_sections}
    for key in edits:
        if key == GROUNDS_BODY_KEY:
            continue
        section = by_key.get(key)
        if section is None or not section.editable:
            logger.info("Rejected edit to non-editable section %s", key)
            raise NonEditableSectionError(key)

    sections = tuple(
        s.model_copy(update={"content": edits[s.key]}) if s.key in edits else s
        for s in document.fixed_sections
    )
    return document.model_copy(
        update={
            "fixed_sections": sections,
            "grounds_body": edits.get(GROUNDS_BODY_KEY, document.grounds_body),
        }
    )
