"""
Prompt rendering for HelmChecker chat backends.

The adapters send a fixed system prompt plus a user prompt rendered from
the request. PromptBuilder offers optional templates that produce a ready
Request from an AnalysisContext; callers are free to build requests by hand.
"""

import logging
from dataclasses import dataclass, field

from helmchecker.providers.exceptions import InvalidRequestError
from helmchecker.providers.models import (
    AnalysisContext,
    AnalysisType,
    Request,
    RequestOptions,
    ResponseFormat,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert DevOps engineer specializing in Kubernetes, Helm, and GitOps patterns. "
    "You provide detailed, accurate analysis of deployment configurations, identify potential "
    "issues, and suggest best practices. Always structure your responses clearly and provide "
    "actionable recommendations."
)

MAX_COMMITS = 5


def render_context(context: AnalysisContext) -> str:
    """Render an analysis context as Markdown sections."""
    lines: list[str] = ["## Context", ""]

    repo = context.repository
    if repo is not None:
        lines.append(f"Repository: {repo.owner}/{repo.name}")
        if repo.url:
            lines.append(f"URL: {repo.url}")
        if repo.branch:
            lines.append(f"Branch: {repo.branch}")
        if repo.commit_sha:
            lines.append(f"Commit: {repo.commit_sha}")
        if repo.last_update is not None:
            lines.append(f"Last Updated: {repo.last_update.isoformat()}")
        lines.append("")

    if context.detected_patterns:
        lines.append("### Detected GitOps Patterns:")
        for pattern in context.detected_patterns:
            entry = f"- {pattern.type}"
            if pattern.version:
                entry += f" (v{pattern.version})"
            if pattern.path:
                entry += f" at {pattern.path}"
            if pattern.confidence:
                entry += f", confidence {pattern.confidence * 100:.1f}%"
            lines.append(entry)
        lines.append("")

    if context.helm_charts:
        lines.append("### Helm Charts:")
        for chart in context.helm_charts:
            lines.append(f"- {chart.name} (v{chart.version})")
            if chart.app_version:
                lines.append(f"  App version: {chart.app_version}")
            if chart.is_outdated:
                lines.append(f"  Latest version: {chart.latest_version}")
            if chart.deprecated:
                lines.append("  DEPRECATED")
            if chart.breaking_changes:
                lines.append(f"  Breaking changes: {', '.join(chart.breaking_changes)}")
        lines.append("")

    if context.git_history:
        lines.append("### Recent Changes:")
        for commit in context.git_history[:MAX_COMMITS]:
            entry = f"- {commit.sha[:8]} {commit.message}"
            if commit.date is not None:
                entry += f" ({commit.date.date().isoformat()})"
            lines.append(entry)
        lines.append("")

    if context.current_state or context.target_state:
        lines.append("### State Information:")
        if context.current_state:
            lines.append("- Current state provided")
        if context.target_state:
            lines.append("- Target state provided")
        lines.append("")

    if context.constraints:
        lines.append("### Constraints:")
        lines.extend(f"- {constraint}" for constraint in context.constraints)
        lines.append("")

    return "\n".join(lines)


def render_user_prompt(request: Request) -> str:
    """
    Render the user message for a request.

    The query comes first, followed by any context and a format hint.
    """
    parts = [request.query, ""]
    if request.context is not None:
        parts.append(render_context(request.context))

    fmt = request.options.response_format
    if fmt == ResponseFormat.JSON:
        parts.append("Please respond in JSON format.")
    elif fmt == ResponseFormat.MARKDOWN:
        parts.append("Please respond in Markdown format.")

    return "\n".join(parts).rstrip() + "\n"


def build_messages(request: Request, system_prompt: str = SYSTEM_PROMPT) -> list[dict[str, str]]:
    """Chat messages (system, user) for a request."""
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": render_user_prompt(request)},
    ]


@dataclass
class PromptTemplate:
    """A reusable analysis prompt."""

    name: str
    description: str
    prompt: str
    analysis_type: AnalysisType = AnalysisType.GENERAL
    required_context: list[str] = field(default_factory=list)
    max_tokens: int = 2000
    temperature: float = 0.3


CONTEXT_CHECKS = {
    "repository": lambda ctx: ctx.repository is not None,
    "patterns": lambda ctx: bool(ctx.detected_patterns),
    "charts": lambda ctx: bool(ctx.helm_charts),
}


DEFAULT_TEMPLATES = [
    PromptTemplate(
        name="helm-chart-analysis",
        description="Analyzes Helm charts for issues and improvements",
        prompt=(
            "# Helm Chart Analysis Request\n\n"
            "Please analyze the provided Helm chart(s) and assess chart structure, "
            "values configuration, template quality, dependencies, security and upgrade path.\n\n"
            "Structure your response as: Summary, Detailed Analysis, "
            "Upgrade Considerations (breaking changes, risk level), Action Items."
        ),
        analysis_type=AnalysisType.GENERAL,
        required_context=["charts"],
        max_tokens=2000,
        temperature=0.3,
    ),
    PromptTemplate(
        name="kubernetes-validation",
        description="Validates Kubernetes manifests for correctness and best practices",
        prompt=(
            "# Kubernetes Manifest Validation Request\n\n"
            "Please validate the Kubernetes manifests: API versions, resource requests and "
            "limits, security context, networking, storage, high availability and labels.\n\n"
            "Structure your response as: Validation Results (passed, warnings, errors), "
            "Critical Issues, Recommendations."
        ),
        analysis_type=AnalysisType.COMPATIBILITY,
        required_context=["patterns"],
        max_tokens=1500,
        temperature=0.2,
    ),
    PromptTemplate(
        name="gitops-pattern-detection",
        description="Detects and analyzes GitOps patterns in repository",
        prompt=(
            "# GitOps Pattern Analysis Request\n\n"
            "Please confirm the detected GitOps patterns, identify any missed ones and "
            "compare the configuration against GitOps best practices.\n\n"
            "Structure your response as: Pattern Summary, Configuration Review, "
            "Best Practice Alignment, Recommendations."
        ),
        analysis_type=AnalysisType.PATTERN_DETECTION,
        required_context=["repository", "patterns"],
        max_tokens=1800,
        temperature=0.3,
    ),
    PromptTemplate(
        name="upgrade-risk-assessment",
        description="Assesses risks associated with Helm chart upgrades",
        prompt=(
            "# Upgrade Risk Assessment Request\n\n"
            "Please assess the risks of upgrading the listed Helm charts: breaking changes, "
            "dependency impact, data migration, rollback complexity and downtime. "
            "Rate each risk by severity and likelihood and give a mitigation.\n\n"
            "Structure your response as: Executive Summary, Detailed Risk Analysis, "
            "Mitigation Strategy, Testing Plan."
        ),
        analysis_type=AnalysisType.RISK_ASSESSMENT,
        required_context=["charts"],
        max_tokens=2500,
        temperature=0.2,
    ),
    PromptTemplate(
        name="best-practices-review",
        description="Reviews configuration against Kubernetes and Helm best practices",
        prompt=(
            "# Best Practices Review Request\n\n"
            "Please review the configuration against Kubernetes and Helm best practices "
            "for security, reliability, performance, observability, maintainability, "
            "scalability and cost.\n\n"
            "Structure your response as: Best Practices Score (0-100 with a category "
            "breakdown), Adherence to Standards, Priority Recommendations, Implementation Guide."
        ),
        analysis_type=AnalysisType.RECOMMENDATION,
        max_tokens=2000,
        temperature=0.3,
    ),
    PromptTemplate(
        name="compatibility-check",
        description="Checks compatibility between chart versions and Kubernetes versions",
        prompt=(
            "# Compatibility Check Request\n\n"
            "Please check the Helm charts for deprecated or removed Kubernetes APIs, "
            "feature availability and required migrations.\n\n"
            "Structure your response as: Compatibility Summary, Detailed Findings, "
            "Migration Requirements, Testing Strategy."
        ),
        analysis_type=AnalysisType.COMPATIBILITY,
        required_context=["charts"],
        max_tokens=1500,
        temperature=0.2,
    ),
    PromptTemplate(
        name="dependency-analysis",
        description="Analyzes chart dependencies and their impacts",
        prompt=(
            "# Dependency Analysis Request\n\n"
            "Please map the Helm chart dependency tree and identify version conflicts, "
            "circular or transitive dependency problems, known vulnerabilities and the "
            "impact of updating each dependency.\n\n"
            "Structure your response as: Dependency Graph, Identified Issues, "
            "Update Recommendations, Impact Assessment."
        ),
        analysis_type=AnalysisType.IMPACT,
        required_context=["charts"],
        max_tokens=1800,
        temperature=0.3,
    ),
    PromptTemplate(
        name="security-audit",
        description="Performs security audit of Kubernetes configurations",
        prompt=(
            "# Security Audit Request\n\n"
            "Please audit container security, RBAC, network policies, secrets management, "
            "pod security, resource limits and compliance.\n\n"
            "Structure your response as: Security Posture, Vulnerability Assessment, "
            "Compliance Check, Remediation Plan, Security Recommendations."
        ),
        analysis_type=AnalysisType.RISK_ASSESSMENT,
        max_tokens=2500,
        temperature=0.2,
    ),
]


class PromptBuilder:
    """Builds Requests from named templates."""

    def __init__(self, templates: list[PromptTemplate] | None = None):
        self._templates: dict[str, PromptTemplate] = {}
        for template in DEFAULT_TEMPLATES if templates is None else templates:
            self.register(template)

    def register(self, template: PromptTemplate) -> None:
        self._templates[template.name] = template

    def get(self, name: str) -> PromptTemplate | None:
        return self._templates.get(name)

    def template_names(self) -> list[str]:
        return sorted(self._templates)

    def analysis_type(self, name: str) -> AnalysisType:
        """Analysis type a template produces; GENERAL for unknown names."""
        template = self._templates.get(name)
        return template.analysis_type if template is not None else AnalysisType.GENERAL

    def build(
        self,
        name: str,
        context: AnalysisContext | None,
        options: RequestOptions | None = None,
    ) -> Request:
        """
        Build a Request from a template.

        Args:
            name: Template name.
            context: Analysis context; must carry the template's required parts.
            options: Request options; defaults to Markdown output.

        Raises:
            InvalidRequestError: Unknown template or missing context.
        """
        template = self._templates.get(name)
        if template is None:
            raise InvalidRequestError("template", f"template not found: {name}")
        if context is None:
            raise InvalidRequestError("context", "context is required")

        for required in template.required_context:
            check = CONTEXT_CHECKS.get(required)
            if check is not None and not check(context):
                raise InvalidRequestError("context", f"missing required context: {required}")

        logger.debug(f"Building request from template '{name}'")
        return Request(
            query=template.prompt,
            type=template.analysis_type,
            context=context,
            max_tokens=template.max_tokens,
            temperature=template.temperature,
            options=options or RequestOptions(response_format=ResponseFormat.MARKDOWN),
        )
