# src/regent/core/layers.py
"""Architectural layer rules for file templates.

A create_file template is checked against the rules of its step's layer
before anything is written. Violations fail the step; warnings are only
reported. Layers without rules accept any template.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

# layer -> import paths its files must not import from
FORBIDDEN_IMPORTS: Dict[str, Tuple[str, ...]] = {
    "domain": ("@/data", "@/infra", "@/presentation", "@/validation", "@/main"),
    "data": ("@/infra", "@/presentation", "@/validation", "@/main"),
    "infra": ("@/presentation", "@/validation", "@/main"),
    "presentation": ("@/data", "@/infra", "@/main"),
    "validation": ("@/domain", "@/data", "@/infra", "@/main"),
}

_IMPORT_SOURCE = re.compile(r"""\bfrom\s+['"]([^'"]+)['"]""")


@dataclass(frozen=True)
class LayerRule:
    """A pattern check on a template.

    With required=False the rule fires when the pattern is found, otherwise
    when it is missing. Only violations fail the step.
    """
    pattern: "re.Pattern[str]"
    message: str
    violation: bool = False
    required: bool = False

    def fires(self, template: str) -> bool:
        found = self.pattern.search(template) is not None
        return found != self.required


LAYER_RULES: Dict[str, Tuple[LayerRule, ...]] = {
    "domain": (
        LayerRule(
            re.compile(r"\bimport\s+(?:axios|fetch|prisma|redis|mongodb)\b"),
            "External dependencies are not allowed in the domain layer",
            violation=True,
        ),
    ),
    "data": (
        LayerRule(
            re.compile(r"\b(?:implements|extends)\b"),
            "Data layer classes should implement a domain interface",
            required=True,
        ),
    ),
    "infra": (
        LayerRule(
            re.compile(r"\btry\b[\s\S]*\bcatch\b"),
            "Infra layer code should handle errors with try/catch",
            required=True,
        ),
    ),
    "presentation": (
        LayerRule(
            re.compile(r"business\s+logic|domain\s+rules|calculations", re.IGNORECASE),
            "Business logic does not belong in the presentation layer",
            violation=True,
        ),
    ),
    "main": (
        LayerRule(
            re.compile(r"factory|Factory|make[A-Z]"),
            "Main layer files should expose factories",
            required=True,
        ),
    ),
}


@dataclass
class LayerReport:
    """Result of checking one template."""
    layer: str
    violations: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations


def _within(source: str, prefix: str) -> bool:
    return source == prefix or source.startswith(prefix + "/")


def check_layer_rules(layer: str, template: str) -> LayerReport:
    """Check a template against the import table and rules of its layer.

    Relative imports are never reported.
    """
    report = LayerReport(layer=layer)
    forbidden = FORBIDDEN_IMPORTS.get(layer, ())

    for source in _IMPORT_SOURCE.findall(template):
        if source.startswith("."):
            continue
        if any(_within(source, prefix) for prefix in forbidden):
            report.violations.append(f"{layer} layer cannot import from {source}")
        elif layer == "domain" and not _within(source, "@/domain"):
            report.warnings.append(f"Domain layer should only import from @/domain, not {source}")

    for rule in LAYER_RULES.get(layer, ()):
        if rule.fires(template):
            (report.violations if rule.violation else report.warnings).append(rule.message)

    return report
