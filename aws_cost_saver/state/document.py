"""
State document: trick machine name -> captured resource records.
"""
import json
import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional

from pydantic import BaseModel

from ..core.exceptions import StateError

logger = logging.getLogger(__name__)


class StateDocument:
    """Durable record of what a conserve run changed.

    A key is present only for tricks that ran in the producing conserve
    run; an absent key means there is nothing to restore for that trick.
    Records are kept as plain JSON-compatible dictionaries.
    """

    def __init__(self, tricks: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._tricks: Dict[str, List[Dict[str, Any]]] = {}
        for machine_name, records in (tricks or {}).items():
            self.set(machine_name, records)

    def set(self, machine_name: str, records: Iterable[Any]) -> None:
        """Store the records of one trick, replacing any previous ones."""
        self._tricks[machine_name] = [self._serialize_record(r) for r in records]

    def get(self, machine_name: str) -> Optional[List[Dict[str, Any]]]:
        """Records of a trick, or None if the trick did not run."""
        records = self._tricks.get(machine_name)
        return None if records is None else list(records)

    def machine_names(self) -> List[str]:
        return sorted(self._tricks)

    def __contains__(self, machine_name: str) -> bool:
        return machine_name in self._tricks

    def __iter__(self) -> Iterator[str]:
        return iter(self.machine_names())

    def __len__(self) -> int:
        return len(self._tricks)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StateDocument):
            return NotImplemented
        return self._tricks == other._tricks

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {name: list(records) for name, records in self._tricks.items()}

    def to_json(self) -> str:
        """Serialize with stable key ordering so documents diff cleanly."""
        try:
            return json.dumps(self._tricks, indent=2, sort_keys=True, default=str) + "\n"
        except (TypeError, ValueError) as e:
            raise StateError(f"Failed to serialize state document: {e}")

    @classmethod
    def from_json(cls, content: str) -> 'StateDocument':
        """Parse a state document.

        Raises:
            StateError: If the content is not a JSON object of record arrays
        """
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StateError(f"State file corrupted: {e}")

        if not isinstance(data, dict):
            raise StateError("State file must contain a JSON object keyed by trick name")

        for machine_name, records in data.items():
            if not isinstance(records, list):
                raise StateError(f"State of {machine_name} must be an array, got {type(records).__name__}")
            for record in records:
                if not isinstance(record, dict):
                    raise StateError(f"State of {machine_name} contains a non-object record: {record!r}")

        return cls(data)

    @staticmethod
    def _serialize_record(record: Any) -> Dict[str, Any]:
        if isinstance(record, BaseModel):
            return record.model_dump(mode='json', by_alias=True, exclude_none=True)
        if isinstance(record, dict):
            return dict(record)
        raise StateError(f"Cannot store record of type {type(record).__name__}")
