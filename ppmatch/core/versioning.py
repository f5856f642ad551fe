"""
Version strings for technology evidence and requirements.

"17", "v3.4", "17.0.2" parse to integer tuples; a requirement may be
open-ended ("17+", "17 or higher", "17 or later").
"""

import re
from dataclasses import dataclass
from typing import Optional, Tuple

VERSION_PATTERN = re.compile(r"\bv?(\d+(?:\.\d+)*)(\+)?(?!\w)(?!\.\d)", re.IGNORECASE)
OPEN_ENDED_PATTERN = re.compile(r"^\s*(\+|or\s+(higher|later|above|newer|greater))", re.IGNORECASE)


def parse_version(text: Optional[str]) -> Optional[Tuple[int, ...]]:
    """Parse "v17.0.2" -> (17, 0, 2). Returns None when no version is present."""
    if not text:
        return None
    match = VERSION_PATTERN.search(text.strip())
    if not match:
        return None
    return tuple(int(part) for part in match.group(1).split("."))


def format_version(parts: Tuple[int, ...]) -> str:
    return ".".join(str(p) for p in parts)


def _pad(a: Tuple[int, ...], b: Tuple[int, ...]) -> Tuple[Tuple[int, ...], Tuple[int, ...]]:
    size = max(len(a), len(b))
    return a + (0,) * (size - len(a)), b + (0,) * (size - len(b))


@dataclass(frozen=True)
class VersionRequirement:
    """Required version of one technology."""
    version: Tuple[int, ...]
    open_ended: bool = False

    @classmethod
    def parse(cls, text: Optional[str]) -> Optional["VersionRequirement"]:
        """Parse "17+", "17 or later" or "17". None when no version."""
        if not text:
            return None
        match = VERSION_PATTERN.search(text)
        if not match:
            return None
        version = tuple(int(p) for p in match.group(1).split("."))
        open_ended = bool(match.group(2)) or bool(OPEN_ENDED_PATTERN.match(text[match.end():]))
        return cls(version=version, open_ended=open_ended)

    def is_satisfied_by(self, version: Optional[str]) -> bool:
        parsed = parse_version(version)
        if parsed is None:
            return False
        if self.open_ended:
            have, need = _pad(parsed, self.version)
            return have >= need
        # Exact requirement matches on the stated prefix: "17" accepts "17.0.2"
        have, need = _pad(parsed[:len(self.version)], self.version)
        return have == need

    def label(self) -> str:
        return format_version(self.version) + ("+" if self.open_ended else "")
