from enum import StrEnum


class StringEnum(StrEnum):
    """
    A StrEnum subclass that behaves like a plain string in all representations.

    StrEnum.__repr__ returns the member representation (e.g. '<RunPhase.POLLING: 'polling'>');
    this one returns the bare value so phases read naturally in logs and error messages.
    """

    def __repr__(self) -> str:
        return self.value

    def __str__(self) -> str:
        return self.value

    def __format__(self, format_spec: str) -> str:
        return self.value.__format__(format_spec)


TRUE_STRINGS = frozenset({"1", "t", "true", "yes", "y", "on"})
FALSE_STRINGS = frozenset({"0", "f", "false", "no", "n", "off"})


def parse_bool(value: str) -> bool:
    """Parse a boolean option value, raising ValueError for anything unrecognized."""
    normalized = value.strip().lower()
    if normalized in TRUE_STRINGS:
        return True
    if normalized in FALSE_STRINGS:
        return False
    raise ValueError(f"invalid boolean value {value!r}")
