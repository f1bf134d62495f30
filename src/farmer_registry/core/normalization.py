"""
Canonical labels for free-text registry fields.

Each field has an ordered tuple of rules. The first rule whose needle is
contained in the raw value wins; the rule sets overlap on purpose (e.g. an
income string can mention several thresholds), so order is part of the
contract. Values no rule claims keep their trimmed raw text.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from farmer_registry.core.models import clean_text


@dataclass(frozen=True)
class ContainsRule:
    needles: Tuple[str, ...]
    label: str
    ignore_case: bool = False
    exact: bool = False

    def applies(self, value: str) -> bool:
        text = value.lower() if self.ignore_case else value
        for needle in self.needles:
            n = needle.lower() if self.ignore_case else needle
            if self.exact:
                if text == n:
                    return True
            elif n in text:
                return True
        return False


RuleSet = Sequence[ContainsRule]


def normalize(value: Optional[str], rules: RuleSet, missing: str) -> str:
    text = clean_text(value)
    if not text:
        return missing
    for rule in rules:
        if rule.applies(text):
            return rule.label
    return text


EDUCATION_RULES: Tuple[ContainsRule, ...] = (
    ContainsRule(("primary",), "Primary", ignore_case=True),
    ContainsRule(("secondary",), "Secondary", ignore_case=True),
    ContainsRule(("bachelor", "university"), "University", ignore_case=True),
    ContainsRule(("tvet", "vocational", "diploma"), "Vocational/TVET", ignore_case=True),
    ContainsRule(("none",), "None", ignore_case=True, exact=True),
)

BUSINESS_SIZE_RULES: Tuple[ContainsRule, ...] = (
    ContainsRule(("Micro",), "Micro"),
    ContainsRule(("Small",), "Small"),
    ContainsRule(("Medium",), "Medium"),
    ContainsRule(("Large",), "Large"),
)

BUSINESS_TYPE_RULES: Tuple[ContainsRule, ...] = (
    ContainsRule(("Individual",), "Individual"),
    ContainsRule(("Cooperative",), "Cooperative"),
    ContainsRule(("Formal",), "Formal Enterprise"),
    ContainsRule(("Informal",), "Informal Enterprise"),
    ContainsRule(("Association",), "Association"),
)

REVENUE_RULES: Tuple[ContainsRule, ...] = (
    ContainsRule(("Less than",), "< 840k"),
    ContainsRule(("Between 840",), "840k-1.2M"),
    ContainsRule(("1,200,000", "1.2M"), "1.2M-2.4M"),
    ContainsRule(("2,400,000", "2.4M"), "2.4M-3.6M"),
    ContainsRule(("3,600,000", "3.6M"), "> 3.6M"),
    ContainsRule(("Above",), "> 4.8M"),
)

SUPPORT_RULES: Tuple[ContainsRule, ...] = (
    ContainsRule(("Training",), "Training"),
    ContainsRule(("eCommerce",), "eCommerce Onboarding"),
    ContainsRule(("digital",), "Digital Content Support"),
)


def normalize_education(value: Optional[str]) -> str:
    return normalize(value, EDUCATION_RULES, missing="Not specified")


def normalize_business_size(value: Optional[str]) -> str:
    return normalize(value, BUSINESS_SIZE_RULES, missing="Unknown")


def normalize_business_type(value: Optional[str]) -> str:
    return normalize(value, BUSINESS_TYPE_RULES, missing="Unknown")


def normalize_revenue(annual_income: Optional[str], revenue: Optional[str] = None) -> str:
    """Annual income takes precedence over the revenue bracket field."""
    raw = clean_text(annual_income) or clean_text(revenue)
    return normalize(raw, REVENUE_RULES, missing="Unknown")


def split_support(value: Optional[str]) -> List[str]:
    """Split a comma-separated support list into normalized, non-empty labels."""
    tokens: Iterable[str] = (t.strip() for t in clean_text(value).split(","))
    return [normalize(t, SUPPORT_RULES, missing="") for t in tokens if t]
