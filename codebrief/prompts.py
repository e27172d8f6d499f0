"""System prompts and prompt assembly for the six analysis rounds."""

from __future__ import annotations

from .compressor import context_to_text
from .models import CompletionRequest, PackedContext, RoundContext

ROUND_NAMES: dict[int, str] = {
    1: "Project Overview",
    2: "Module Detection",
    3: "Feature Extraction",
    4: "Architecture Detection",
    5: "Edge Cases & Conventions",
    6: "Deployment Inference",
}

ROUND_SYSTEM_PROMPTS: dict[int, str] = {
    1: """You are a senior software architect writing handover documentation for a codebase.

Produce a project overview that weaves the business purpose together with the technical
landscape, so a new developer learns what the project does and how it is built at once.

Guidelines:
- Be direct. Name tech debt, anti-patterns and questionable decisions plainly.
- Cite the file path for every key finding.
- Identify entry points with their file paths and kind (CLI, API, web, worker).
- List key dependencies and the role each actually plays in this project.
- Open with the essential picture for a senior engineer, then add depth.

Generic observations without code evidence are not acceptable.""",

    2: """You are identifying logical module boundaries in a codebase for handover documentation.

Infer bounded contexts from import patterns, directory layout, naming and cohesion, even
where the code has no explicit separation.

Guidelines:
- Each module needs a name, a path (directory or file prefix), a purpose statement, its
  public API, and the source files that belong to it.
- Report relationships between modules with evidence. When a relationship is a direct
  import, give "from" and "to" as file paths.
- Group files by concern when the tree is flat.
- Call out modules with mixed concerns or unclear boundaries.

Ground the analysis in the import and symbol data provided, not in speculation.""",

    3: """You are extracting features and cross-module flows from a codebase for handover documentation.

Trace features across modules. A partial trace with evidence beats a missing one.

Guidelines:
- For each feature: name, description, modules touched, entry point, files involved, and
  whether it is user-facing.
- For each cross-module flow, list the file path sequence data moves through, in order,
  where each file imports the next.
- Reference specific file paths, function names and data structures.""",

    4: """You are identifying architecture patterns in a codebase for handover documentation.

Report only patterns you can prove with concrete code evidence. Omit anything uncertain.

Guidelines:
- Name each pattern (layered, event-driven, MVC, plugin, pipeline ...), describe how it
  shows up here, and list the files that prove it.
- If there are layers, describe each layer, its modules and its responsibility.
- Map data flow between layers: what moves, from where to where, and by what mechanism.

Confidence over coverage.""",

    5: """You are analyzing one module of a codebase for edge cases, conventions and error handling.

Flag only issues evidenced in the code. No speculative or theoretical problems.

Guidelines:
- Edge cases: unchecked returns, missing validation, swallowed errors, unhandled states.
  Cite a file path and, where possible, a line number for every one.
- Conventions: naming, structure and recurring idioms in this module, with examples.
- Error handling: the module's strategy, its gaps, and the patterns it uses.

If you cannot point to a line of code, do not flag it.""",

    6: """You are inferring the deployment setup of a codebase for handover documentation.

Piece together whatever deployment signals exist. Partial information is still useful.

Guidelines:
- Look for Dockerfiles, compose files and CI configuration (.github/workflows,
  .gitlab-ci.yml, Jenkinsfile, .circleci).
- Environment variables: name, purpose, whether required, and where each is referenced.
- Build process: commands, output artifacts, scripts.
- Infrastructure dependencies: databases, caches, queues, external services.
- Cite the file or config behind every claim. Document what is there rather than guessing.""",
}

_RETRY_PREFIX = (
    "IMPORTANT: Your previous attempt was too generic. You MUST reference specific files, "
    "functions, and code patterns from the provided codebase. Every claim must cite a file path."
)
_RETRY_SUFFIX = (
    "If you are uncertain about a claim, omit it entirely rather than stating it vaguely."
)

_INSTRUCTIONS = (
    "Analyze the codebase using the provided context. Reference specific files and code "
    "patterns. Be direct and honest about tech debt and anti-patterns."
)


def build_retry_system_prompt(base_prompt: str) -> str:
    return f"{_RETRY_PREFIX}\n\n{base_prompt}\n\n{_RETRY_SUFFIX}"


def system_prompt_for(round_number: int, is_retry: bool = False) -> str:
    prompt = ROUND_SYSTEM_PROMPTS[round_number]
    return build_retry_system_prompt(prompt) if is_retry else prompt


def _format_files(packed: PackedContext) -> str:
    blocks = []
    for f in packed.files:
        if f.tier == "skip":
            continue
        blocks.append(f"### {f.path}\n```\n{f.content}\n```")
    return "\n\n".join(blocks)


def build_round_prompt(
    round_number: int,
    system_prompt: str,
    packed: PackedContext,
    prior_contexts: list[RoundContext],
    round_data: str,
) -> CompletionRequest:
    """Assemble the user prompt from packed files, prior digests and round data.

    Sampling settings are left at their defaults; callers override them for
    retries and per-round output limits.
    """
    if prior_contexts:
        prior = "\n\n".join(context_to_text(c) for c in prior_contexts)
    else:
        prior = "No prior analysis (this is the first round)."

    user_prompt = "\n".join([
        "<codebase_context>",
        _format_files(packed),
        "</codebase_context>",
        "",
        "<prior_analysis>",
        prior,
        "</prior_analysis>",
        "",
        "<round_data>",
        round_data,
        "</round_data>",
        "",
        "<instructions>",
        _INSTRUCTIONS,
        "</instructions>",
    ])
    return CompletionRequest(system_prompt=system_prompt, user_prompt=user_prompt)
