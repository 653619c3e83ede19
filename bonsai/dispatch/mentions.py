"""Resolve ``@mention`` tokens in a dispatch batch to a recipient."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

DEFAULT_ROLE_SLUGS: tuple[str, ...] = ("designer", "developer", "critic", "researcher", "hacker")

_TEAM_RE = re.compile(r"@team(?![\w-])", re.IGNORECASE)


def _mention_re(token: str) -> re.Pattern[str]:
    return re.compile("@" + re.escape(token) + r"(?![\w-])", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class Persona:
    """An AI agent identity known to the board."""

    id: str
    name: str
    role: str | None = None


class TargetKind(str, Enum):
    TEAM = "team"
    PERSONA = "persona"
    ROLE = "role"
    UNASSIGNED = "unassigned"


@dataclass(frozen=True, slots=True)
class DispatchTarget:
    kind: TargetKind
    persona: Persona | None = None
    role: str | None = None

    @classmethod
    def team(cls) -> "DispatchTarget":
        return cls(kind=TargetKind.TEAM)

    @classmethod
    def unassigned(cls) -> "DispatchTarget":
        return cls(kind=TargetKind.UNASSIGNED)

    @classmethod
    def for_persona(cls, persona: Persona) -> "DispatchTarget":
        return cls(kind=TargetKind.PERSONA, persona=persona)

    @classmethod
    def for_role(cls, role: str) -> "DispatchTarget":
        return cls(kind=TargetKind.ROLE, role=role)

    def describe(self) -> str:
        if self.kind is TargetKind.PERSONA and self.persona is not None:
            return f"persona:{self.persona.name}"
        if self.kind is TargetKind.ROLE and self.role is not None:
            return f"role:{self.role}"
        return self.kind.value


@dataclass(frozen=True, slots=True)
class _Snapshot:
    personas: tuple[tuple[Persona, re.Pattern[str]], ...]
    roles: tuple[tuple[str, re.Pattern[str]], ...]


class MentionDirectory:
    """Read-mostly directory of personas and role slugs.

    The host calls :meth:`refresh` on its own schedule; readers always see one
    complete snapshot because the swap is a single attribute assignment.
    """

    def __init__(
        self,
        personas: Iterable[Persona] = (),
        role_slugs: Sequence[str] = DEFAULT_ROLE_SLUGS,
    ) -> None:
        self._snapshot = _Snapshot(personas=(), roles=())
        self.refresh(personas, role_slugs)

    def refresh(self, personas: Iterable[Persona], role_slugs: Sequence[str] | None = None) -> None:
        # Longest names first so "@Alexandra" wins over "@Alex".
        ordered = sorted((p for p in personas if p.name.strip()), key=lambda p: len(p.name), reverse=True)
        slugs = role_slugs if role_slugs is not None else [slug for slug, _ in self._snapshot.roles]
        self._snapshot = _Snapshot(
            personas=tuple((persona, _mention_re(persona.name)) for persona in ordered),
            roles=tuple((slug.lower(), _mention_re(slug)) for slug in slugs if slug.strip()),
        )

    @property
    def personas(self) -> tuple[Persona, ...]:
        return tuple(persona for persona, _ in self._snapshot.personas)

    @property
    def role_slugs(self) -> tuple[str, ...]:
        return tuple(slug for slug, _ in self._snapshot.roles)

    def find(self, persona_id: str) -> Persona | None:
        for persona, _ in self._snapshot.personas:
            if persona.id == persona_id:
                return persona
        return None

    def resolve(self, text: str) -> DispatchTarget:
        """Pick the recipient for ``text``: team, then persona, then role."""

        snapshot = self._snapshot
        if _TEAM_RE.search(text):
            return DispatchTarget.team()
        for persona, pattern in snapshot.personas:
            if pattern.search(text):
                return DispatchTarget.for_persona(persona)
        for slug, pattern in snapshot.roles:
            if pattern.search(text):
                return DispatchTarget.for_role(slug)
        return DispatchTarget.unassigned()
