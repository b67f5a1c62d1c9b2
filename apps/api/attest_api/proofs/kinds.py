"""Action and proof kinds as a closed namespace/verb union.

Actions and kinds arrive as free-form strings (``"ai:compose"``,
``"export:pdf"``, legacy bare ``"pdf"``). ``ActionKind.parse`` maps them onto a
known ``Namespace`` where possible and keeps the raw string, so kinds that are
not defined yet still round-trip unchanged.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Namespace(str, Enum):
    """Known action namespaces."""

    AI = "ai"
    EXPORT = "export"
    IMPORT = "import"
    UPLOAD = "upload"
    DOC = "doc"
    CANVAS = "canvas"
    SYSTEM = "system"


class ActorType(str, Enum):
    """Who performed an action."""

    HUMAN = "human"
    AI = "ai"
    SYSTEM = "system"


# Bare export kinds recorded by the export pipeline (legacy type "export:<kind>").
EXPORT_KINDS = frozenset({"pdf", "docx"})

# AI proof kinds projected into subject timelines.
AI_TIMELINE_KINDS = (
    "ai:compose",
    "ai:rewriteSelection",
    "ai:constrainedRewrite",
    "ai:rewriteConstrained",
)

COMPOSE_KIND = "ai:compose"
# Very old compose rows were typed as a generic AI action.
LEGACY_COMPOSE_TYPES = ("ai:compose", "ai:action")

AI_ACTION_FILTER = "ai:action"


@dataclass(frozen=True)
class ActionKind:
    """Tagged ``{namespace, verb}`` with a raw-string escape hatch."""

    namespace: Optional[Namespace]
    verb: str
    raw: str

    @classmethod
    def parse(cls, raw: str) -> "ActionKind":
        raw = str(raw or "")
        head, sep, tail = raw.partition(":")
        if sep:
            try:
                return cls(namespace=Namespace(head), verb=tail, raw=raw)
            except ValueError:
                return cls(namespace=None, verb=raw, raw=raw)
        if raw in EXPORT_KINDS:
            return cls(namespace=Namespace.EXPORT, verb=raw, raw=raw)
        return cls(namespace=None, verb=raw, raw=raw)

    @property
    def is_ai(self) -> bool:
        return self.namespace is Namespace.AI

    @property
    def is_export(self) -> bool:
        return self.namespace is Namespace.EXPORT

    def legacy_type(self) -> str:
        """Legacy ``type`` column value (bare export kinds gain the prefix)."""
        if self.is_export and ":" not in self.raw:
            return f"{Namespace.EXPORT.value}:{self.raw}"
        return self.raw

    def __str__(self) -> str:
        return self.raw


def is_ai_action(action: str) -> bool:
    """True when ``action`` lives in the AI namespace."""
    return ActionKind.parse(action).is_ai


def kind_from_legacy_type(legacy_type: Optional[str]) -> Optional[str]:
    """Map a legacy ``type`` value back to a normalized kind."""
    if not legacy_type:
        return None
    parsed = ActionKind.parse(legacy_type)
    if parsed.is_export and ":" in legacy_type:
        return parsed.verb
    return legacy_type


def match_action_filter(action: str, action_filter: Optional[str]) -> bool:
    """Timeline action filter: ``ai:action`` matches the whole AI namespace."""
    if not action_filter:
        return True
    if action_filter == AI_ACTION_FILTER:
        return is_ai_action(action)
    return action == action_filter
