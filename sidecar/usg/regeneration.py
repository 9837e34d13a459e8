"""
Section regeneration loop.

For each candidate block (at most a handful, chosen by reconciliation) the
model is asked to rewrite just that section from its dictated field values.
Calls run one after another. A block gets one strict retry when the
response fails validation; after that its assembled lines are kept and a
flag is raised. Nothing here can fail the report as a whole.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from llm.prompt_engine import PromptEngine
from llm.response_parser import parse_regenerated_section
from usg.assembler import AssembledReport
from usg.blocks import AnatomicalBlock, known_headings
from usg.transport import ModelTransport

logger = logging.getLogger(__name__)


@dataclass
class RegenerationAttempt:
    block_id: str
    ok: bool
    raw_text: str = ""
    strict: bool = False
    error: str = ""


@dataclass
class RegenerationOutcome:
    flags: list[str] = field(default_factory=list)
    attempts: list[RegenerationAttempt] = field(default_factory=list)
    replaced_blocks: list[str] = field(default_factory=list)


def block_field_values(block: AnatomicalBlock, fields: dict[str, str]) -> dict[str, str]:
    return {key: fields[key] for key in block.field_keys if (fields.get(key) or "").strip()}


async def _regenerate_block(
    block: AnatomicalBlock,
    system_prompt: str,
    user_prompt: str,
    transport: ModelTransport,
    outcome: RegenerationOutcome,
    strict: bool,
) -> Optional[list[str]]:
    try:
        raw_text = await transport(system_prompt, user_prompt, None)
    except Exception as e:
        logger.warning("Regeneration call for %s failed: %s", block.block_id, e)
        outcome.attempts.append(RegenerationAttempt(block.block_id, False, "", strict, str(e)))
        return None

    try:
        lines, _issues = parse_regenerated_section(raw_text, block.block_id, known_headings())
    except ValueError as e:
        logger.warning("Regeneration response for %s rejected: %s", block.block_id, e)
        outcome.attempts.append(RegenerationAttempt(block.block_id, False, raw_text or "", strict, str(e)))
        return None

    outcome.attempts.append(RegenerationAttempt(block.block_id, True, raw_text, strict))
    return lines


async def regenerate_sections(
    report: AssembledReport,
    baseline: AssembledReport,
    candidates: list[AnatomicalBlock],
    fields: dict[str, str],
    transport: ModelTransport,
    prompt_engine: Optional[PromptEngine] = None,
) -> RegenerationOutcome:
    """Rewrite candidate sections of ``report`` in place."""
    engine = prompt_engine or PromptEngine()
    outcome = RegenerationOutcome()

    for block in candidates:
        if report.find_section(block.heading) is None:
            logger.warning("Heading %r not rendered; skipping regeneration of %s", block.heading, block.block_id)
            outcome.flags.append(
                f"{block.label} section could not be located in the report; kept original text."
            )
            continue

        current_lines = report.section_lines(block.heading) or []
        baseline_lines = baseline.section_lines(block.heading) or []
        user_prompt = engine.build_regeneration_user_prompt(
            block, baseline_lines, current_lines, block_field_values(block, fields),
        )

        lines = await _regenerate_block(
            block, engine.build_regeneration_system_prompt(), user_prompt, transport, outcome, strict=False,
        )
        if lines is None:
            lines = await _regenerate_block(
                block, engine.build_regeneration_system_prompt(strict=True), user_prompt,
                transport, outcome, strict=True,
            )

        if lines is None:
            outcome.flags.append(f"Section regeneration failed for {block.label}; kept original text.")
            continue

        if report.replace_section(block.heading, lines):
            outcome.replaced_blocks.append(block.block_id)
            outcome.flags.append(f"{block.label} section regenerated from dictated findings.")
        else:
            logger.warning("Heading %r not found; regenerated %s discarded", block.heading, block.block_id)
            outcome.flags.append(
                f"Regenerated {block.label} section could not be located in the report; kept original text."
            )

    return outcome
