"""Message template rendering and A/B variant selection."""

from __future__ import annotations

import random
import re
from dataclasses import dataclass
from typing import Any, Mapping

from orchestrator.core.constants import FULL_NAME_FALLBACK

VARIABLE_PATTERN = re.compile(r"\{\{\s*([a-zA-Z0-9_.]+)\s*\}\}")


@dataclass(frozen=True)
class RenderedContent:
    subject: str | None
    body: str
    variant: str | None = None


def build_variables(
    attributes: Mapping[str, Any],
    trigger_data: Mapping[str, Any] | None = None,
    extra: Mapping[str, Any] | None = None,
) -> dict[str, str]:
    """
    Build the template variable map.

    Contact attributes and custom fields are exposed by name, the event payload
    as ``trigger.<key>``. ``full_name`` falls back to a friendly greeting.
    """
    variables: dict[str, str] = {}
    for key, value in attributes.items():
        if key == "custom_fields" or value is None:
            continue
        variables[key] = str(value)
    for key, value in (attributes.get("custom_fields") or {}).items():
        if value is not None:
            variables.setdefault(key, str(value))
    if not variables.get("full_name"):
        variables["full_name"] = FULL_NAME_FALLBACK
    for key, value in (trigger_data or {}).items():
        if value is not None:
            variables[f"trigger.{key}"] = str(value)
    for key, value in (extra or {}).items():
        if value is not None:
            variables[key] = str(value)
    return variables


def render_template(template: str | None, variables: Mapping[str, str]) -> str | None:
    """Replace ``{{var}}`` placeholders; unknown variables render empty."""
    if template is None:
        return None
    return VARIABLE_PATTERN.sub(lambda m: variables.get(m.group(1), ""), template)


def pick_variant(variants: list[dict] | None, rng: random.Random | None = None) -> dict | None:
    """Weighted random choice among A/B variants (weights default to equal)."""
    if not variants:
        return None
    weights = [max(float(v.get("weight", 1) or 0), 0.0) for v in variants]
    if sum(weights) <= 0:
        weights = [1.0] * len(variants)
    chooser = rng or random
    return chooser.choices(variants, weights=weights, k=1)[0]


def render_message(
    subject_template: str | None,
    body_template: str,
    variables: Mapping[str, str],
    variants: list[dict] | None = None,
    rng: random.Random | None = None,
) -> RenderedContent:
    """Render subject/body, letting a chosen variant override either template."""
    variant = pick_variant(variants, rng)
    variant_name = None
    if variant:
        variant_name = variant.get("name")
        subject_template = variant.get("subject") or subject_template
        body_template = variant.get("body") or body_template
    return RenderedContent(
        subject=render_template(subject_template, variables),
        body=render_template(body_template, variables) or "",
        variant=variant_name,
    )
