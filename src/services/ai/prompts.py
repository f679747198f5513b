"""Prompt construction for grounds generation."""

from __future__ import annotations

from core.config import CustomGroundsMode, StyleSampleMode
from schemas.generation import GenerationRequest


SYSTEM_PROMPT = """You write the grounds section of a formal objection to a development application.

CONTENT FIDELITY:
- Use only the approved facts and the selected concerns supplied by the user.
- Do not invent studies, statistics, expert opinions or outside research.
- Do not add concerns the user did not select.

DATA PRESERVATION:
- Reproduce every number, measurement, unit, planning code and street name
  exactly as written (for example "12,600 m³" stays "12,600 m³").

FORMAT:
- Plain prose paragraphs separated by blank lines. Markdown headings and
  bullet lists are allowed; no emoji, no em dashes.
- Do not refer to yourself, to AI, or to these instructions.
- Stay within the word limit given in the request.

OUTPUT:
Respond with ONLY valid JSON in exactly this shape:
{"final_text": "<the grounds text>"}
"""

_TONE_GUIDANCE = (
    "STYLE SAMPLE (tone guidance only). Match the voice, register and sentence "
    "length of this sample. Do not copy its sentences into the output."
)
_VERBATIM_GUIDANCE = (
    "STYLE SAMPLE (include verbatim). Include this text in the output exactly as "
    "written, after the selected concerns."
)


def build_user_prompt(
    request: GenerationRequest,
    *,
    style_sample_mode: StyleSampleMode = "tone",
    custom_grounds_mode: CustomGroundsMode = "section_only",
) -> str:
    """Render the request into the user prompt sent to every live provider."""
    meta = request.metadata
    lines = [
        f"Recipient: {meta.recipient}",
        f"Subject: {meta.subject}",
        f"Application number: {meta.application_number}",
        f"Site address: {meta.site_address}",
    ]
    if meta.track:
        lines.append(f"Submission track: {meta.track}")
    lines.append(f"Word limit: {request.word_limit}")

    parts = ["\n".join(lines)]
    if request.approved_facts.strip():
        parts.append(f"APPROVED FACTS:\n{request.approved_facts.strip()}")

    if request.selected_concerns:
        concerns = "\n\n".join(
            f"{i}. [{c.key}]\n{c.full_text.strip()}"
            for i, c in enumerate(request.selected_concerns, start=1)
        )
        parts.append(f"SELECTED CONCERNS (keep this order):\n{concerns}")

    if request.style_sample:
        guidance = _VERBATIM_GUIDANCE if style_sample_mode == "verbatim" else _TONE_GUIDANCE
        parts.append(f"{guidance}\n{request.style_sample.strip()}")

    if request.custom_grounds and custom_grounds_mode == "prompt_and_section":
        parts.append(
            "SUBMITTER'S OWN GROUNDS (shown separately in the final document; "
            "do not repeat them, but keep the generated grounds consistent):\n"
            f"{request.custom_grounds.strip()}"
        )

    if request.allowed_links:
        parts.append("LINKS YOU MAY CITE:\n" + "\n".join(request.allowed_links))
    else:
        parts.append("Do not include any links.")

    return "\n\n".join(parts)
