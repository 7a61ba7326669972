"""Rendering of counter values into codes, and the inverse shape check.

Templates are tokenized once into segments; each placeholder is resolved
exactly once, so text produced by a substitution (a prefix containing
"{number}", for example) is never scanned again.
"""

import re
from datetime import datetime
from functools import lru_cache
from typing import NamedTuple

from sequencer.core.modules.sequence.models import NumberFormat, SequenceConfig
from sequencer.errors import ConfigurationError

PLACEHOLDER_RE = re.compile(r"\{([^{}]*)\}")
PADDED_NUMBER_RE = re.compile(r"^number:(0+)$")
LEGACY_NUMBER_RE = re.compile(r"^(N+|#+)$")

# Placeholder name -> segment kind. Upper-case names come from the older settings screens.
SIMPLE_PLACEHOLDERS = {
    "prefix": "prefix",
    "suffix": "suffix",
    "year": "year",
    "YYYY": "year",
    "YY": "year2",
    "month": "month",
    "MM": "month",
    "day": "day",
    "DD": "day",
}

FORMAT_TITLES = {
    NumberFormat.PREFIX_NUMBER: "Prefix + Sequential Number",
    NumberFormat.NUMBER_SUFFIX: "Sequential Number + Suffix",
    NumberFormat.PREFIX_NUMBER_SUFFIX: "Prefix + Sequential Number + Suffix",
}

# Catalog name -> (title, template)
TEMPLATE_PRESETS = {
    "prefix-year-number": ("Prefix + Year + Sequential", "{prefix}-{year}-{number}"),
    "prefix-yearmonth-number": ("Prefix + Year/Month + Sequential", "{prefix}-{year}{month}-{number}"),
    "prefix-date-number": ("Prefix + Date + Sequential", "{prefix}-{year}{month}{day}-{number}"),
    "year-prefix-number": ("Year + Prefix + Sequential", "{year}-{prefix}-{number}"),
    "date-prefix-number": ("Date + Prefix + Sequential", "{year}{month}{day}-{prefix}-{number}"),
    "number-only": ("Sequential Number Only", "{number}"),
}


class Segment(NamedTuple):
    kind: str  # literal, prefix, suffix, year, year2, month, day, number
    text: str = ""  # literal text
    width: int | None = None  # number pad width; None means number_length


@lru_cache(maxsize=256)
def parse_template(template: str) -> tuple[Segment, ...]:
    """Split a template into literal and placeholder segments.

    Braces outside a complete placeholder are rejected.
    """
    segments: list[Segment] = []
    pos = 0
    for match in PLACEHOLDER_RE.finditer(template):
        if match.start() > pos:
            segments.append(_literal_segment(template[pos : match.start()]))
        segments.append(_placeholder_segment(match.group(1)))
        pos = match.end()
    if pos < len(template):
        segments.append(_literal_segment(template[pos:]))
    return tuple(segments)


def _literal_segment(text: str) -> Segment:
    if "{" in text or "}" in text:
        raise ConfigurationError(f"Unbalanced brace in template near '{text}'")
    return Segment("literal", text)


def _placeholder_segment(name: str) -> Segment:
    if name in SIMPLE_PLACEHOLDERS:
        return Segment(SIMPLE_PLACEHOLDERS[name])
    if name == "number":
        return Segment("number")
    if m := PADDED_NUMBER_RE.match(name):
        return Segment("number", width=len(m.group(1)))
    if m := LEGACY_NUMBER_RE.match(name):
        return Segment("number", width=len(m.group(1)))
    raise ConfigurationError(f"Unknown placeholder '{{{name}}}' in template")


def config_segments(config: SequenceConfig) -> tuple[Segment, ...]:
    """Segments describing the config's code layout, from its template or its format."""
    if config.template:
        return parse_template(config.template)

    parts: list[Segment] = []
    if config.format in (NumberFormat.PREFIX_NUMBER, NumberFormat.PREFIX_NUMBER_SUFFIX) and config.prefix:
        parts.append(Segment("prefix"))
    parts.append(Segment("number"))
    if config.format in (NumberFormat.NUMBER_SUFFIX, NumberFormat.PREFIX_NUMBER_SUFFIX) and config.suffix:
        parts.append(Segment("suffix"))

    segments: list[Segment] = []
    for i, part in enumerate(parts):
        if i and config.separator:
            segments.append(Segment("literal", config.separator))
        segments.append(part)
    return tuple(segments)


def check_config(config: SequenceConfig) -> None:
    """Raise ConfigurationError if the config cannot produce codes."""
    if config.number_length <= 0:
        raise ConfigurationError(f"number_length must be positive, got {config.number_length}")
    if config.increment <= 0:
        raise ConfigurationError(f"increment must be positive, got {config.increment}")
    if config.start_from < 0:
        raise ConfigurationError(f"start_from must not be negative, got {config.start_from}")
    if config.template is not None and not config.template.strip():
        raise ConfigurationError("template must not be blank")
    config_segments(config)


def luhn_check_digit(code: str) -> str:
    """Luhn check digit over the decimal digits of code.

    Digits are read right to left; the rightmost is taken as is, every second
    one after it is doubled (minus 9 when above 9).
    """
    total = 0
    for i, char in enumerate(reversed(re.findall(r"[0-9]", code))):
        digit = int(char)
        if i % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return str((10 - total % 10) % 10)


def format_code(config: SequenceConfig, value: int, now: datetime) -> str:
    """Render a counter value into a code. Pure: same inputs give the same code."""
    parts: dict[str, str] = {
        "prefix": config.prefix,
        "suffix": config.suffix,
        "year": f"{now.year:04d}",
        "year2": f"{now.year % 100:02d}",
        "month": f"{now.month:02d}",
        "day": f"{now.day:02d}",
    }

    out: list[str] = []
    for segment in config_segments(config):
        if segment.kind == "literal":
            out.append(segment.text)
        elif segment.kind == "number":
            out.append(str(value).zfill(segment.width or config.number_length))
        else:
            out.append(parts[segment.kind])

    code = "".join(out)
    if config.include_check_digit:
        code += luhn_check_digit(code)
    return code


def build_pattern(config: SequenceConfig) -> re.Pattern[str]:
    """Regex matching every code the config can produce.

    The first number placeholder is captured as the "number" group. Counter
    values wider than the pad width are rendered in full, so widths are minimums.
    """
    out: list[str] = []
    captured = False
    for segment in config_segments(config):
        if segment.kind == "literal":
            out.append(re.escape(segment.text))
        elif segment.kind == "prefix":
            out.append(re.escape(config.prefix))
        elif segment.kind == "suffix":
            out.append(re.escape(config.suffix))
        elif segment.kind == "year":
            out.append(r"\d{4}")
        elif segment.kind in ("year2", "month", "day"):
            out.append(r"\d{2}")
        else:
            digits = rf"\d{{{segment.width or config.number_length},}}"
            out.append(digits if captured else f"(?P<number>{digits})")
            captured = True

    if config.include_check_digit:
        out.append(r"\d")
    return re.compile("".join(out))


def matches(config: SequenceConfig, code: str) -> bool:
    if build_pattern(config).fullmatch(code) is None:
        return False
    if config.include_check_digit:
        return luhn_check_digit(code[:-1]) == code[-1]
    return True


def extract_number(config: SequenceConfig, code: str) -> int | None:
    """Counter value encoded in code, or None if code does not have the config's shape."""
    if not matches(config, code):
        return None
    match = build_pattern(config).fullmatch(code)
    number = match.groupdict().get("number") if match else None
    return int(number) if number is not None else None
