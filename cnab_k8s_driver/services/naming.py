"""Cluster-legal names for the objects created by a run."""

import re
import secrets

# Kubernetes label values and job names are capped at 63 characters
MAX_NAME_LENGTH = 63
# Room left for the generated suffix under MAX_NAME_LENGTH
NAME_TEMPLATE_MAX_LENGTH = 50

# Mirrors the API server's generateName: base trimmed to 58, 5 random characters appended
_GENERATED_BASE_MAX_LENGTH = 58
_SUFFIX_LENGTH = 5
_SUFFIX_ALPHABET = "bcdfghjklmnpqrstvwxz2456789"

# Anything outside [a-zA-Z0-9.-] separates segments, as does any run of two or more of "." and "-"
_SEPARATOR = re.compile(r"[^a-zA-Z0-9.\-]+|[.\-]{2,}")


def _segments(*values: str) -> list[str]:
    segments: list[str] = []
    for value in values:
        for part in _SEPARATOR.split(value):
            part = part.strip(".-").lower()
            if part:
                segments.append(part)
    return segments


def generate_name_template(action: str, installation: str) -> str:
    """Build a ``generateName``-style prefix such as ``install-foo-``.

    Segments are added in order while they fit; the segment that crosses
    NAME_TEMPLATE_MAX_LENGTH is cut to the remaining room and nothing after it is kept.
    The result is always a valid DNS-1123 subdomain prefix.
    """
    budget = NAME_TEMPLATE_MAX_LENGTH - 1  # trailing dash
    name = ""
    for segment in _segments(action, installation):
        candidate = f"{name}-{segment}" if name else segment
        if len(candidate) > budget:
            # A cut can land next to a '.' or '-'
            name = candidate[:budget].rstrip(".-")
            break
        name = candidate
    return (name or "cnab") + "-"


def generate_run_id(template: str) -> str:
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(_SUFFIX_LENGTH))
    return template[:_GENERATED_BASE_MAX_LENGTH] + suffix
