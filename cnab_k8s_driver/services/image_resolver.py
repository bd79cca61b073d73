"""Digest pinning for invocation image references.

Parsing follows the OCI distribution reference grammar:

    reference       := name [ ":" tag ] [ "@" digest ]
    name            := [domain "/"] path-component ["/" path-component]*
    digest          := algorithm ":" encoded
"""

import re
from dataclasses import dataclass

from cnab_k8s_driver.domain.exceptions import DigestMismatchError, InvalidDigestError, InvalidReferenceError

NAME_TOTAL_MAX_LENGTH = 255

_ALPHANUMERIC = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]+)"
_PATH_COMPONENT = rf"{_ALPHANUMERIC}(?:{_SEPARATOR}{_ALPHANUMERIC})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN_NAME = rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*"
_IPV6 = r"\[(?:[a-fA-F0-9:]+)\]"
_DOMAIN = rf"(?:{_DOMAIN_NAME}|{_IPV6})(?::[0-9]+)?"
_NAME = rf"(?:{_DOMAIN}/)?{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*"
_TAG = r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9A-Fa-f]{32,}"

REFERENCE_PATTERN = re.compile(rf"^(?P<name>{_NAME})(?::(?P<tag>{_TAG}))?(?:@(?P<digest>{_DIGEST}))?$")

_ALGORITHM_PATTERN = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*$")
# Registered algorithms and the exact encoding they require
_KNOWN_ALGORITHMS = {
    "sha256": re.compile(r"^[a-f0-9]{64}$"),
    "sha384": re.compile(r"^[a-f0-9]{96}$"),
    "sha512": re.compile(r"^[a-f0-9]{128}$"),
}
_ENCODED_PATTERN = re.compile(r"^[a-zA-Z0-9=_-]{32,}$")


@dataclass(frozen=True)
class ImageReference:
    name: str
    tag: str | None = None
    digest: str | None = None

    def __str__(self) -> str:
        ref = self.name
        if self.tag:
            ref += f":{self.tag}"
        if self.digest:
            ref += f"@{self.digest}"
        return ref


def is_valid_digest(digest: str) -> bool:
    algorithm, sep, encoded = digest.partition(":")
    if not sep or not _ALGORITHM_PATTERN.fullmatch(algorithm):
        return False
    known = _KNOWN_ALGORITHMS.get(algorithm)
    if known is not None:
        return bool(known.fullmatch(encoded))
    return bool(_ENCODED_PATTERN.fullmatch(encoded))


def parse_reference(image: str) -> ImageReference:
    """Parse ``image`` into name, tag and digest, raising InvalidReferenceError."""
    match = REFERENCE_PATTERN.fullmatch(image)
    if match is None:
        raise InvalidReferenceError(image, "invalid reference format")

    name = match.group("name")
    if len(name) > NAME_TOTAL_MAX_LENGTH:
        raise InvalidReferenceError(image, f"repository name must not be more than {NAME_TOTAL_MAX_LENGTH} characters")

    digest = match.group("digest")
    if digest is not None and not is_valid_digest(digest):
        raise InvalidReferenceError(image, f"invalid digest {digest}")

    return ImageReference(name=name, tag=match.group("tag"), digest=digest)


def resolve_image(image: str, digest: str | None = None) -> str:
    """Return a digest-qualified reference for ``image`` when a digest is known.

    - embedded digest only: returned unchanged
    - separate digest only: appended as ``name[:tag]@digest``
    - both: they must be identical
    - neither: returned unchanged; no registry lookup is made
    """
    ref = parse_reference(image)

    if not digest:
        return image

    if not is_valid_digest(digest):
        raise InvalidDigestError(image, digest)

    if ref.digest is None:
        return str(ImageReference(name=ref.name, tag=ref.tag, digest=digest))

    if ref.digest != digest:
        raise DigestMismatchError(image, digest, ref.digest)

    return image
