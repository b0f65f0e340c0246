"""
Response validator: heuristic checks for invented or unsupported content.

Advisory only. The report is logged and returned with the answer; it never
blocks delivery.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Pattern, Sequence, Tuple

from .models import ValidationReport

GENERIC_SPANISH_NAMES = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"Laura\s+Gómez",
        r"Carlos\s+Pérez",
        r"María\s+Rodríguez",
        r"Jorge\s+López",
        r"Ana\s+Martínez",
        r"Juan\s+García",
        r"Pedro\s+González",
        r"Sofía\s+Fernández",
        r"Diego\s+Torres",
        r"Valentina\s+Ramírez",
    )
]

PLACEHOLDER_PATTERNS = [
    re.compile(r"Producto\s+[ABC123]\b", re.IGNORECASE),
    re.compile(r"Cliente\s+[ABC123]\b", re.IGNORECASE),
    re.compile(r"Vendedor\s+[ABC123]\b", re.IGNORECASE),
    re.compile(r"Item\s+[ABC123]\b", re.IGNORECASE),
    re.compile(r"\[NOMBRE\]", re.IGNORECASE),
    re.compile(r"\[DATO\]", re.IGNORECASE),
    re.compile(r"\[TBD\]", re.IGNORECASE),
    re.compile(r"XXX"),
    re.compile(r"TODO:", re.IGNORECASE),
]

INVENTION_PHRASES = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"supongamos\s+que",
        r"podríamos\s+asumir",
        r"por\s+ejemplo,?\s+digamos",
        r"imaginemos\s+que",
        r"si\s+asumimos",
    )
]

SUSPICIOUS_NUMBER_FORMATS = [
    re.compile(r"\$\s*\d+\.\d{3}\.\d{3},\d{2}"),
    re.compile(r"\d{10,}"),
]

# Currency amounts stated as facts.
AMOUNT_PATTERN = re.compile(r"\$\s*\d[\d.,]*")

_PENALTIES = {"high": 40, "medium": 20, "low": 10}


@dataclass(frozen=True)
class Finding:
    kind: str
    pattern: str
    suggestion: str
    severity: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.suggestion} [{self.pattern}]"


_FAMILIES: Sequence[Tuple[List[Pattern[str]], str, str, str]] = (
    (GENERIC_SPANISH_NAMES, "potential_hallucination", "Verificar que este nombre exista en los datos reales", "high"),
    (PLACEHOLDER_PATTERNS, "potential_hallucination", "Parece un placeholder genérico, no un dato real", "high"),
    (INVENTION_PHRASES, "potential_hallucination", "El modelo está asumiendo o inventando, no usando datos reales", "medium"),
    (SUSPICIOUS_NUMBER_FORMATS, "suspicious_format", "Formato numérico poco usual, verificar si es real", "low"),
)


def detect(text: str, *, had_successful_tool: bool = True) -> List[Finding]:
    """At most one finding per pattern family."""
    findings: List[Finding] = []
    for patterns, kind, suggestion, severity in _FAMILIES:
        for pattern in patterns:
            if pattern.search(text):
                findings.append(Finding(kind, pattern.pattern, suggestion, severity))
                break
    if not had_successful_tool and AMOUNT_PATTERN.search(text):
        findings.append(
            Finding("missing_source", "unattributed_amount", "Montos sin una consulta de datos que los respalde", "medium")
        )
    return findings


def score(findings: Sequence[Finding]) -> int:
    total = 100 - sum(_PENALTIES.get(f.severity, 10) for f in findings)
    return max(0, total)


def validate(text: str, *, had_successful_tool: bool = True) -> ValidationReport:
    findings = detect(text or "", had_successful_tool=had_successful_tool)
    value = score(findings)
    return ValidationReport(valid=not findings and value >= 70, score=value, warnings=[str(f) for f in findings])
