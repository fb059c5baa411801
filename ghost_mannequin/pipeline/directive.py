"""Render directives: derivation from facts, adjustments, and prompt text."""

import re

from ..models.facts import RenderDirective, UnifiedFacts

BASE_BAN = ("mannequins", "humans", "props", "reflections")

# Neutral stand-in for ban entries removed when sanitizing
_SANITIZED_BAN = "anything_but_the_garment"


def background_rule(background_hex: str) -> str:
    if background_hex.upper() == "#FFFFFF":
        return "pure_white_background"
    return f"solid_background_{background_hex.upper().lstrip('#')}"


def _distinct_texts(labels) -> list[str]:
    seen = set()
    texts = []
    for label in labels:
        if label.text and label.text.casefold() not in seen:
            seen.add(label.text.casefold())
            texts.append(label.text)
    return texts


def derive_directive(facts: UnifiedFacts, label_legibility_min: float = 0.85) -> RenderDirective:
    """Project unified facts onto the renderer contract. Pure."""
    # Critical labels first
    keep_labels = sorted(
        facts.preserved_labels,
        key=lambda label: 0 if label.priority == "critical" else 1,
    )
    hollows = [region.region_type for region in facts.hollow_regions if region.keep_hollow]

    must = [background_rule(facts.background_hex)]
    if facts.interior_render or hollows:
        must.append("render_hollows")
    if keep_labels:
        must += ["preserve_brand_labels", "preserve_label_text"]
    must += [c for c in facts.required_components if c not in must]

    ban = list(BASE_BAN)
    ban += [c for c in facts.forbidden_components if c not in ban]

    return RenderDirective(
        must=must,
        ban=ban,
        must_preserve_labels=_distinct_texts(keep_labels),
        label_bbox_hints=[label.bbox_norm for label in keep_labels if label.bbox_norm],
        label_legibility_min=label_legibility_min if keep_labels else None,
        label_rule=facts.label_visibility,
        background_hex=facts.background_hex,
        interior_render=facts.interior_render,
        hollow_regions=hollows,
        critical_details=[detail.element for detail in facts.critical_details],
        category=facts.category,
        silhouette=facts.silhouette,
        palette=facts.palette,
        material=facts.material,
        drape=facts.drape,
        sheen=facts.sheen,
        transparency=facts.transparency,
        lighting=facts.lighting_preference,
        shadow=facts.shadow_preference,
        view=facts.view,
        framing_margin_pct=facts.framing_margin_pct,
    )


def reduce_directive(directive: RenderDirective) -> RenderDirective:
    """Minimal directive for a last-resort attempt.

    Hard constraints (background, labels, hollows, bans) are kept; soft
    styling and accumulated corrections are dropped.
    """
    return directive.model_copy(update={
        "critical_details": directive.critical_details[:2],
        "corrections": [],
        "label_bbox_hints": [],
        "lighting": "soft_diffused",
        "shadow": "soft",
        "reduced": True,
    })


def _scrub(text: str, pattern: re.Pattern) -> str:
    return re.sub(r"\s{2,}", " ", pattern.sub("", text)).strip(" ,;_")


def sanitize_directive(directive: RenderDirective, terms: list[str]) -> RenderDirective:
    """Remove terms that tend to trip provider safety filters.

    Labels and the background are never touched.
    """
    if not terms:
        return directive.model_copy(update={"sanitized": True})
    pattern = re.compile(
        r"\b(?:" + "|".join(re.escape(t) for t in terms) + r")\w*\b", re.IGNORECASE
    )

    ban = [item for item in directive.ban if not pattern.search(item)]
    if len(ban) < len(directive.ban):
        ban.append(_SANITIZED_BAN)

    details = [_scrub(d, pattern) for d in directive.critical_details]
    corrections = [_scrub(c, pattern) for c in directive.corrections]
    return directive.model_copy(update={
        "ban": ban,
        "category": _scrub(directive.category, pattern) or "garment",
        "silhouette": _scrub(directive.silhouette, pattern) or "garment",
        "material": _scrub(directive.material, pattern) or "fabric",
        "critical_details": [d for d in details if d],
        "corrections": [c for c in corrections if c],
        "sanitized": True,
    })


def amend_directive(directive: RenderDirective, corrections: list[str]) -> RenderDirective:
    """Append verifier corrections, skipping ones already present."""
    merged = list(directive.corrections)
    merged += [c for c in corrections if c and c not in merged]
    return directive.model_copy(update={"corrections": merged})


def build_prompt(directive: RenderDirective) -> str:
    """Compact control-block prompt for the image renderers."""
    palette = directive.palette
    if directive.sanitized:
        intro = [
            "Create a studio product photo of the garment in the reference image,",
            "shaped in 3D as if worn, hollow inside.",
        ]
    else:
        intro = [
            "Create a ghost mannequin product photo of the garment in the reference image:",
            "the garment keeps its worn 3D shape with no visible body or form.",
        ]
    lines = intro + [
        f"Garment: {directive.category}, {directive.silhouette}, {directive.material}.",
        f"Colors: dominant {palette.dominant_hex}, accent {palette.accent_hex}, trim {palette.trim_hex}.",
        f"Fabric: {directive.drape} drape, {directive.sheen}, {directive.transparency}.",
        f"Lighting: {directive.lighting}; shadow: {directive.shadow}; "
        f"{directive.view} view, {directive.framing_margin_pct}% margin.",
        f"Background: solid {directive.background_hex}.",
        f"MUST: {', '.join(directive.must)}.",
        f"BAN: {', '.join(directive.ban)}.",
    ]
    if directive.must_preserve_labels:
        rule = "must stay legible" if directive.label_rule == "required" else "keep if visible"
        quoted = ", ".join(f'"{text}"' for text in directive.must_preserve_labels)
        lines.append(f"Labels ({rule}): {quoted}.")
    if directive.interior_render and directive.hollow_regions:
        lines.append(f"Show the inside through: {', '.join(directive.hollow_regions)}.")
    if directive.critical_details:
        lines.append(f"Keep: {', '.join(directive.critical_details)}.")
    if directive.corrections:
        lines.append("Fix: " + " ".join(directive.corrections))
    return "\n".join(lines)
