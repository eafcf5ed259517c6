# actor.py
# Identity of whoever triggers a mutating operation (an admin or the system itself).

from dataclasses import dataclass

SYSTEM_ACTOR_ID = "system"


@dataclass(frozen=True)
class Actor:
    id: str
    is_system: bool = False

    @classmethod
    def system(cls) -> "Actor":
        """The identity used by scheduled jobs."""
        return cls(id=SYSTEM_ACTOR_ID, is_system=True)

    def __str__(self) -> str:
        return self.id
