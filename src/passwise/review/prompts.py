"""
Prompt builders for review passes and synthesis.

Each pass asks for a markdown response with bullet lists and a risk
line, which is what parse_verdict() knows how to read.
"""

from dataclasses import dataclass

from .models import ChangeContext, ChangeUnit, PassKind


@dataclass(frozen=True)
class PassTemplate:
    """What one pass looks for and how the answer should be laid out."""

    task: str
    focus: tuple[str, ...]
    sections: tuple[tuple[str, str], ...]  # (heading, placeholder bullet)


PASS_TEMPLATES: dict[PassKind, PassTemplate] = {
    PassKind.SYNTAX_LOGIC: PassTemplate(
        task="Code Quality & Logic Review",
        focus=(
            "Syntax errors or potential compilation issues",
            "Logic errors or edge cases",
            "Code structure and readability",
            "Variable naming and conventions",
        ),
        sections=(
            ("Syntax Issues", "[List any syntax problems]"),
            ("Logic Concerns", "[Identify logical flaws or edge cases]"),
            ("Code Quality", "[Comment on structure, readability, naming]"),
            ("Risk Level", "[LOW/MEDIUM/HIGH/CRITICAL] - Brief justification"),
        ),
    ),
    PassKind.SECURITY_PERFORMANCE: PassTemplate(
        task="Security & Performance Review",
        focus=(
            "Security vulnerabilities (injection, XSS, auth bypass, etc.)",
            "Performance bottlenecks or inefficiencies",
            "Resource management issues",
            "Data validation problems",
        ),
        sections=(
            ("Security Issues", "[List security concerns with severity]"),
            ("Performance Impact", "[Identify performance issues]"),
            ("Resource Management", "[Memory leaks, file handles, connections]"),
            ("Risk Assessment", "[CRITICAL/HIGH/MEDIUM/LOW] - Detailed reasoning"),
        ),
    ),
    PassKind.ARCHITECTURE_DESIGN: PassTemplate(
        task="Architecture & Design Review",
        focus=(
            "Design patterns and architectural concerns",
            "Code maintainability and extensibility",
            "Dependency management",
            "API design and contracts",
        ),
        sections=(
            ("Design Quality", "[Assess architectural decisions]"),
            ("Maintainability", "[Long-term code health concerns]"),
            ("API/Interface Changes", "[Breaking changes, backward compatibility]"),
            ("Recommendations", "[Specific improvement suggestions]"),
            ("Risk Level", "[LOW/MEDIUM/HIGH/CRITICAL] - Brief justification"),
        ),
    ),
    PassKind.TESTING_DOCS: PassTemplate(
        task="Testing & Documentation Review",
        focus=(
            "Test coverage and quality",
            "Documentation completeness",
            "Example usage and edge cases",
            "Error handling and logging",
        ),
        sections=(
            ("Test Coverage", "[Assess test completeness]"),
            ("Documentation", "[Missing or unclear documentation]"),
            ("Error Handling", "[Exception handling quality]"),
            ("Suggestions", "[Testing and documentation improvements]"),
            ("Risk Level", "[LOW/MEDIUM/HIGH/CRITICAL] - Brief justification"),
        ),
    ),
}


def build_pass_prompt(kind: PassKind, unit: ChangeUnit) -> str:
    """Build the prompt for one pass over one unit."""
    template = PASS_TEMPLATES[kind]
    prompt_parts = [f"TASK: {template.task}", "", "Analyze the following diff for:"]
    prompt_parts.extend(f"{i}. {item}" for i, item in enumerate(template.focus, 1))
    prompt_parts.extend(["", f"FILE: {unit.file_path}"])

    if unit.start_line is not None and unit.end_line is not None:
        prompt_parts.append(f"LINES: {unit.start_line}-{unit.end_line}")

    if unit.context_before:
        prompt_parts.extend(["", "CONTEXT BEFORE:", unit.context_before])

    prompt_parts.extend(["", "DIFF:", unit.diff_content])

    if unit.context_after:
        prompt_parts.extend(["", "CONTEXT AFTER:", unit.context_after])

    prompt_parts.extend(["", "FORMAT YOUR RESPONSE:"])
    for heading, placeholder in template.sections:
        if heading.startswith("Risk"):
            # Single line so the verdict parser finds "Risk Level: WORD"
            prompt_parts.append(f"## {heading}: {placeholder}")
        else:
            prompt_parts.extend([f"## {heading}", f"- {placeholder}"])

    return "\n".join(prompt_parts)


def build_file_synthesis_prompt(
    file_path: str, chunk_count: int, analysis_text: str
) -> str:
    """Ask for a file-level review from per-unit pass results."""
    return "\n".join([
        "TASK: Synthesize File Analysis",
        "",
        "You have analyzed a file through multiple specialized passes. "
        "Synthesize the findings into a cohesive file-level review.",
        "",
        f"FILE: {file_path}",
        f"CHUNKS ANALYZED: {chunk_count}",
        "",
        "ANALYSIS RESULTS:",
        analysis_text,
        "",
        "FORMAT YOUR RESPONSE:",
        "## File Summary",
        "## Critical Issues",
        "## Recommendations",
        "## Overall Risk Level: [CRITICAL/HIGH/MEDIUM/LOW] with reasoning",
    ])


def build_final_synthesis_prompt(
    context: ChangeContext | None,
    files_count: int,
    chunks_count: int,
    analysis_text: str,
) -> str:
    """Ask for the change-level report from file results."""
    title = context.title if context and context.title else "No title"
    author = context.author if context and context.author else "Unknown author"
    return "\n".join([
        "TASK: Synthesize Pull Request Analysis",
        "",
        "You have completed multiple specialized reviews of a pull request. "
        "Now synthesize these findings into a comprehensive review.",
        "",
        "PULL REQUEST CONTEXT:",
        f"- Title: {title}",
        f"- Author: {author}",
        f"- Files analyzed: {files_count}",
        f"- Total chunks: {chunks_count}",
        "",
        "PREVIOUS ANALYSES:",
        analysis_text,
        "",
        "FORMAT YOUR RESPONSE:",
        "## Executive Summary",
        "## Critical Issues",
        "## Important Recommendations",
        "## Minor Suggestions",
        "## Decision Recommendation: [APPROVE/REQUEST_CHANGES/REJECT] with clear reasoning",
    ])
