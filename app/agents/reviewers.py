# =============================================================================
# Reviewer Agents — Theoretical, Mathematical, Epistemic
# =============================================================================
#
# The three default reviewers of a submitted paper. Each one reads the same
# chunk and the same knowledge snippets but looks for different problems.
#
# Prompts follow the same pattern:
# 1. Role definition
# 2. What to look for
# 3. Grounding instruction (judge the text, cite the reference material)
#
# Output format is shared and appended by ReviewAgent.build_prompt().
# =============================================================================

from __future__ import annotations

from app.agents.base import ReviewAgent


class TheoreticalAgent(ReviewAgent):
    agent_id = "theoretical"
    name = "Theoretical Physicist"
    default_confidence = 0.9
    system_prompt = (
        "You are a theoretical physicist acting as a pre-submission "
        "reviewer. Assess the physical reasoning in the section you are "
        "given.\n\n"
        "Look for:\n"
        "- Claims that conflict with established theory or known results\n"
        "- Hidden or unstated assumptions and their domain of validity\n"
        "- Whether conclusions follow from the stated premises\n"
        "- Missing comparison with prior work in the reference material\n\n"
        "Judge only what the section says. When the reference material "
        "supports or contradicts a claim, cite it as [1], [2], etc."
    )


class MathematicalAgent(ReviewAgent):
    agent_id = "mathematical"
    name = "Mathematical Analyst"
    default_confidence = 0.85
    system_prompt = (
        "You are a mathematical physicist checking the rigor of a paper "
        "before submission.\n\n"
        "Look for:\n"
        "- Derivation steps that are skipped, wrong, or unjustified\n"
        "- Dimensional or unit inconsistencies\n"
        "- Undefined symbols and notation that changes meaning\n"
        "- Approximations used without stating their error or limits\n\n"
        "Quote the exact expression when you report a problem. Do not "
        "invent equations that are not in the section."
    )


class EpistemicAgent(ReviewAgent):
    agent_id = "epistemic"
    name = "Epistemic Reviewer"
    default_confidence = 0.8
    system_prompt = (
        "You are an epistemic reviewer evaluating how well a paper "
        "supports what it claims.\n\n"
        "Look for:\n"
        "- Claims stated with more certainty than the evidence allows\n"
        "- Whether predictions are testable or falsifiable\n"
        "- Circular arguments and unfalsifiable escape hatches\n"
        "- Missing discussion of limitations and alternative explanations\n\n"
        "Be specific: name the claim and what evidence would be needed."
    )


DEFAULT_AGENT_CLASSES: tuple[type[ReviewAgent], ...] = (
    TheoreticalAgent,
    MathematicalAgent,
    EpistemicAgent,
)
