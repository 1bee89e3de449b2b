"""Turns free-form consultation JSON into readable text blocks for the PDF."""
from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def camel_to_label(key: str) -> str:
    """``chiefComplaint`` / ``chief_complaint`` -> ``Chief Complaint``."""
    spaced = _CAMEL_BOUNDARY.sub(" ", str(key)).replace("_", " ")
    words = [w for w in spaced.split(" ") if w]
    return " ".join(w[:1].upper() + w[1:] for w in words)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def inline_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return ", ".join(inline_value(v) for v in value if not is_empty(v))
    if isinstance(value, dict):
        return "; ".join(f"{camel_to_label(k)}: {inline_value(v)}" for k, v in value.items() if not is_empty(v))
    return str(value)


def format_generic_object(obj: Dict[str, Any], indent: str = "") -> str:
    return "\n".join(
        f"{indent}• {camel_to_label(k)}: {inline_value(v)}" for k, v in obj.items() if not is_empty(v)
    )


def _pick(obj: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in obj and not is_empty(obj[key]):
            return obj[key]
    return None


def format_physical_exam(value: Any) -> str:
    if not isinstance(value, dict):
        return value if isinstance(value, str) else inline_value(value)

    lines: List[str] = []
    general = _pick(value, "general", "generalExam", "general_exam")
    if isinstance(general, dict):
        lines.append("General")
        lines.append(format_generic_object(general, indent="  "))

    by_system = _pick(value, "bySystem", "by_system", "systems")
    if isinstance(by_system, dict):
        if lines:
            lines.append("")
        lines.append("By System")
        lines.append(format_generic_object(by_system, indent="  "))

    observations = _pick(value, "observations", "generalObservations", "general_observations")
    if observations is not None:
        if lines:
            lines.append("")
        lines.append(f"Observations: {inline_value(observations)}")

    findings = _pick(value, "specificFindings", "specific_findings")
    if isinstance(findings, dict):
        block = ["Specific Findings"]
        for label, keys in (
            ("Normal", ("normal", "normalFindings", "normal_findings")),
            ("Abnormal", ("abnormal", "abnormalFindings", "abnormal_findings")),
            ("Clinical Impression", ("clinicalImpression", "clinical_impression")),
        ):
            found = _pick(findings, *keys)
            if found is not None:
                block.append(f"  • {label}: {inline_value(found)}")
        if len(block) > 1:
            lines.extend([""] + block if lines else block)

    return "\n".join(lines) if lines else format_generic_object(value)


def parse_jsonish(value: Any) -> Any:
    """Strings holding JSON objects/arrays are decoded; everything else is returned as is."""
    if isinstance(value, str) and value.strip()[:1] in ("{", "["):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def format_section(title: str, content: Any) -> str:
    content = parse_jsonish(content)
    if is_empty(content):
        return ""
    if isinstance(content, str):
        return content
    if title == "Physical Exam":
        return format_physical_exam(content)
    if isinstance(content, dict):
        return format_generic_object(content)
    return inline_value(content)


def vital_sign_lines(vitals: Any) -> List[str]:
    vitals = parse_jsonish(vitals)
    if is_empty(vitals):
        return []
    if isinstance(vitals, dict):
        return [f"{camel_to_label(k)}: {inline_value(v)}" for k, v in vitals.items() if not is_empty(v)]
    return [inline_value(vitals)]


def emergency_contact_line(contact: Any) -> Optional[str]:
    contact = parse_jsonish(contact)
    if is_empty(contact):
        return None
    if isinstance(contact, dict):
        name = contact.get("name") or ""
        relationship = contact.get("relationship") or ""
        phone = contact.get("phone") or ""
        return f"{name} ({relationship}) - Tel: {phone}"
    return inline_value(contact)


__all__ = [
    "camel_to_label",
    "inline_value",
    "format_generic_object",
    "format_physical_exam",
    "format_section",
    "vital_sign_lines",
    "emergency_contact_line",
]
