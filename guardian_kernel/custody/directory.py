"""
Guardian Directory — who may act for a child, and is the family shared-custody?

This is an external collaborator. The kernel only depends on the Protocol;
`InMemoryGuardianDirectory` backs tests and the demo API.
"""

from typing import Dict, Iterable, List, Protocol, Set


class GuardianDirectory(Protocol):
    def is_guardian(self, child_id: str, guardian_id: str) -> bool: ...

    def is_shared_custody(self, child_id: str) -> bool: ...

    def guardians_of(self, child_id: str) -> List[str]: ...


class InMemoryGuardianDirectory:
    """Child → guardians map. A family is shared-custody when flagged as such."""

    def __init__(self):
        self._guardians: Dict[str, Set[str]] = {}
        self._shared: Set[str] = set()

    def register_child(
        self,
        child_id: str,
        guardian_ids: Iterable[str],
        shared_custody: bool = True,
    ) -> None:
        self._guardians[child_id] = set(guardian_ids)
        if shared_custody:
            self._shared.add(child_id)
        else:
            self._shared.discard(child_id)

    def is_guardian(self, child_id: str, guardian_id: str) -> bool:
        return guardian_id in self._guardians.get(child_id, set())

    def is_shared_custody(self, child_id: str) -> bool:
        return child_id in self._shared and len(self._guardians.get(child_id, ())) >= 2

    def guardians_of(self, child_id: str) -> List[str]:
        return sorted(self._guardians.get(child_id, set()))
