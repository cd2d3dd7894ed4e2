"""
Context Assembler
------------------
Turns ranked fragments into the bounded context string sent to the model
plus the ordered, deduplicated list of citations.

Accumulation is a greedy prefix: fragments are appended whole, in rank
order, while the context (separators included) stays within max_chars.
The first fragment that would overflow ends assembly -- later, smaller
fragments are not tried.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from secondbrain.generation.prompts import FRAGMENT_SEPARATOR
from secondbrain.schemas import Citation, RankedFragment


@dataclass
class AssembledContext:
    """Context string plus the citations of the fragments it contains."""

    context: str
    sources: list[Citation] = field(default_factory=list)
    fragments_used: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.context


def build_context(ranked: list[RankedFragment], max_chars: int) -> AssembledContext:
    """
    Assemble the context for a question.

    Args:
        ranked:    Fragments, most relevant first.
        max_chars: Upper bound on len(context).

    Returns:
        AssembledContext; empty when the budget excludes the first fragment.
    """
    parts: list[str] = []
    sources: list[Citation] = []
    seen: set[tuple[int, int]] = set()
    total = 0

    for fragment in ranked:
        added = len(fragment.text) + (len(FRAGMENT_SEPARATOR) if parts else 0)
        if total + added > max_chars:
            break

        parts.append(fragment.text)
        total += added

        key = (fragment.document_id, fragment.chunk_index)
        if key not in seen:
            seen.add(key)
            sources.append(fragment.citation())

    context = FRAGMENT_SEPARATOR.join(parts)
    logger.debug(
        f"[Context] {len(parts)}/{len(ranked)} fragments | {len(context)}/{max_chars} chars "
        f"| {len(sources)} source(s)"
    )
    return AssembledContext(context=context, sources=sources, fragments_used=len(parts))
