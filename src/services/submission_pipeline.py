"""The two submitter actions: draft grounds, then finalise and send.

draft:    concerns -> orchestrator -> validator -> formatter -> record store
finalize: edits -> validator -> renderer -> delivery queue -> record store

A rejected validation outcome stops both actions before anything is
formatted or rendered.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from core.config import PipelineConfig
from core.exceptions import (
    ConfigurationError,
    ContentPolicyViolation,
    RenderingFailed,
    SubmissionStateError,
)
from schemas.delivery import Attachment, DeliveryJobCreate
from schemas.documents import DEFAULT_DECLARATION, DeclarationTemplate, SubmissionDocument
from schemas.generation import (
    GenerationRequest,
    SelectedConcern,
    ValidationConstraints,
    ValidationOutcome,
    ValidationStatus,
)
from schemas.submissions import DraftResult, FinalizeResult, SubmissionRecord, SubmissionStatus
from services.ai.orchestrator import GenerationOrchestrator
from services.content_validator import validate
from services.delivery.queue import DeliveryQueue
from services.document_formatter import apply_field_edits, format_submission
from services.interfaces import (
    ConcernTemplateStore,
    SubmissionRecordStore,
    resolve_selected_concerns,
)
from services.rendering.blocks import blocks_to_html, parse_markdown
from services.rendering.renderer import ArtifactRenderer


logger = logging.getLogger(__name__)

SUBMISSION_PRIORITY = 10


class SubmissionPipeline:
    def __init__(
        self,
        *,
        orchestrator: GenerationOrchestrator,
        renderer: ArtifactRenderer,
        queue: DeliveryQueue,
        concerns: ConcernTemplateStore,
        records: SubmissionRecordStore,
        config: PipelineConfig,
        declaration: DeclarationTemplate = DEFAULT_DECLARATION,
    ) -> None:
        self._orchestrator = orchestrator
        self._renderer = renderer
        self._queue = queue
        self._concerns = concerns
        self._records = records
        self._config = config
        self._declaration = declaration

    def constraints(self, source_texts: Sequence[str] = ()) -> ValidationConstraints:
        cfg = self._config.validation
        return ValidationConstraints(
            word_limit=cfg.word_limit,
            min_utilization=cfg.min_utilization,
            allowed_links=cfg.allowed_links,
            extra_banned_phrases=cfg.extra_banned_phrases,
            source_texts=tuple(source_texts),
        )

    def _check_grounds(
        self,
        grounds: str,
        custom_grounds: str | None,
        source_texts: Sequence[str] = (),
    ) -> tuple[ValidationOutcome, ValidationOutcome | None]:
        outcome = validate(grounds, self.constraints(source_texts))
        custom_outcome = None
        if custom_grounds and custom_grounds.strip():
            custom_outcome = validate(custom_grounds, self.constraints())
        return outcome, custom_outcome

    async def _reject_if_needed(
        self,
        submission_id: str,
        outcome: ValidationOutcome,
        custom_outcome: ValidationOutcome | None,
    ) -> None:
        violations = list(outcome.violations)
        if custom_outcome is not None:
            violations.extend(custom_outcome.violations)
        if not violations:
            return
        rejected = outcome.model_copy(
            update={
                "status": ValidationStatus.REJECTED,
                "sanitized_text": "",
                "violations": tuple(violations),
            }
        )
        await self._records.save_validation(submission_id, rejected)
        logger.info(
            "Submission %s rejected by content rules: %s",
            submission_id,
            ", ".join(sorted({v.rule for v in violations})),
        )
        raise ContentPolicyViolation(violations)

    async def draft(
        self,
        submission_id: str,
        concern_keys: Sequence[str],
        *,
        custom_grounds: str | None = None,
        style_sample: str | None = None,
        priority: Sequence[str] | None = None,
    ) -> DraftResult:
        """Generate, validate and format the grounds for a submission."""
        record = await self._records.get_submission(submission_id)
        selected = await resolve_selected_concerns(self._concerns, concern_keys, priority)
        request = self._build_request(record, selected, custom_grounds, style_sample)

        result = await self._orchestrator.generate(request)
        await self._records.save_generation(submission_id, result)

        outcome, custom_outcome = self._check_grounds(
            result.raw_text, request.custom_grounds, [c.full_text for c in selected]
        )
        await self._reject_if_needed(submission_id, outcome, custom_outcome)
        await self._records.save_validation(submission_id, outcome)

        custom_clean = custom_outcome.sanitized_text if custom_outcome else None
        document = format_submission(
            record.metadata, outcome.sanitized_text, custom_clean, self._declaration
        )
        await self._records.save_document(submission_id, document)

        warnings = [w.detail for w in outcome.warnings]
        logger.info(
            "Drafted submission %s (%d words, %d warning(s))",
            submission_id,
            outcome.word_count,
            len(warnings),
        )
        return DraftResult(
            submission_id=submission_id,
            document=document,
            markdown=document.to_markdown(),
            word_count=outcome.word_count,
            warnings=warnings,
        )

    def _build_request(
        self,
        record: SubmissionRecord,
        selected: Sequence[SelectedConcern],
        custom_grounds: str | None,
        style_sample: str | None,
    ) -> GenerationRequest:
        cfg = self._config.validation
        return GenerationRequest(
            metadata=record.generation_metadata(),
            approved_facts=record.approved_facts,
            selected_concerns=tuple(selected),
            style_sample=style_sample,
            custom_grounds=custom_grounds,
            word_limit=cfg.word_limit,
            allowed_links=cfg.allowed_links,
        )

    async def finalize(
        self, submission_id: str, edits: Mapping[str, str] | None = None
    ) -> FinalizeResult:
        """Apply edits, re-check the grounds, render the PDF and queue the e-mail."""
        record = await self._records.get_submission(submission_id)
        if record.status is SubmissionStatus.FINALIZED:
            raise SubmissionStateError(f"Submission {submission_id} is already finalised")
        if record.document is None:
            raise SubmissionStateError(f"Submission {submission_id} has no draft to finalise")
        council_email = record.metadata.council_email
        if not council_email:
            raise ConfigurationError(f"No council e-mail address for submission {submission_id}")

        document = record.document
        if edits:
            document = apply_field_edits(document, edits)

        outcome, custom_outcome = self._check_grounds(
            document.grounds_body, document.custom_grounds
        )
        await self._reject_if_needed(submission_id, outcome, custom_outcome)
        await self._records.save_validation(submission_id, outcome)
        document = document.model_copy(
            update={
                "grounds_body": outcome.sanitized_text,
                "custom_grounds": custom_outcome.sanitized_text if custom_outcome else None,
            }
        )
        await self._records.save_document(submission_id, document)

        try:
            artifact = await self._renderer.render(document)
        except RenderingFailed as e:
            await self._records.mark_pending(submission_id, e.message)
            raise

        job_id = await self._queue.enqueue(
            self._delivery_job(submission_id, record, document, council_email, artifact.binary, artifact.filename)
        )
        await self._records.save_artifact(submission_id, artifact, str(job_id))
        logger.info(
            "Finalised submission %s (%s engine, %d pages); delivery job %s",
            submission_id,
            artifact.engine_used,
            artifact.page_count,
            job_id,
        )
        return FinalizeResult(
            submission_id=submission_id,
            filename=artifact.filename,
            page_count=artifact.page_count,
            engine_used=str(artifact.engine_used),
            delivery_job_id=str(job_id),
        )

    def _delivery_job(
        self,
        submission_id: str,
        record: SubmissionRecord,
        document: SubmissionDocument,
        council_email: str,
        pdf: bytes,
        filename: str,
    ) -> DeliveryJobCreate:
        # The e-mail section may have been edited; the "From" line stays with metadata
        email_section = document.section("submitter.email")
        submitter_email = (
            email_section.content.strip() if email_section else record.metadata.submitter.email
        ) or None
        markdown = document.to_markdown()
        return DeliveryJobCreate(
            recipient=council_email,
            cc=[submitter_email] if submitter_email else [],
            reply_to=submitter_email,
            subject=f"{record.metadata.subject}, {record.metadata.site_address}",
            body_text=markdown,
            body_html=blocks_to_html(parse_markdown(markdown), document.title),
            attachments=[Attachment(filename=filename, content=pdf)],
            priority=SUBMISSION_PRIORITY,
            email_type="submission",
            submission_id=submission_id,
        )
