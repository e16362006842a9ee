"""
Memory Store Contract

The core consumes a memory store; it does not own persistence. This module
defines the contract and ships an in-memory reference store used by the CLI
and the test suite.

Contract:
- find_memories_by_vendor / find_memories_by_type / find_memories_by_pattern
- get_all_memories
- save_memory (last-writer-wins per memory id)
- get_config_value / set_config_value for the escalation threshold

Adapters raise StoreUnavailableError on failure and never retry internally.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

import yaml
from loguru import logger

from ..errors import MemoryValidationError, StoreUnavailableError
from .types import Memory, MemoryType, PatternType

ESCALATION_THRESHOLD_KEY = 'escalation_threshold'


class ThresholdStore(Protocol):
    """Where the shared escalation threshold lives."""

    def get_config_value(self, key: str) -> Optional[float]:
        ...

    def set_config_value(self, key: str, value: float) -> None:
        ...


class MemoryStore(ThresholdStore, Protocol):
    """Read side of the memory store plus single-record saves."""

    def find_memories_by_vendor(self, vendor_id: str) -> List[Memory]:
        ...

    def find_memories_by_type(self, memory_type: MemoryType) -> List[Memory]:
        ...

    def find_memories_by_pattern(self, pattern_type: PatternType) -> List[Memory]:
        ...

    def get_all_memories(self) -> List[Memory]:
        ...

    def save_memory(self, memory: Memory) -> None:
        ...


class InMemoryMemoryStore:
    """
    Dict-backed store.

    Results come back in insertion order, which keeps recall deterministic.
    Saving a memory with an existing id replaces it in place.
    """

    def __init__(
        self,
        memories: Optional[Iterable[Memory]] = None,
        config: Optional[Dict[str, float]] = None,
    ):
        self._memories: Dict[str, Memory] = {}
        self._config: Dict[str, float] = dict(config or {})
        self._lock = threading.Lock()

        for memory in memories or ():
            if memory.id in self._memories:
                raise MemoryValidationError(f"Duplicate memory id: {memory.id}", field_name='id', value=memory.id)
            self._memories[memory.id] = memory

    def __len__(self) -> int:
        return len(self._memories)

    def get_memory(self, memory_id: str) -> Optional[Memory]:
        return self._memories.get(memory_id)

    def find_memories_by_vendor(self, vendor_id: str) -> List[Memory]:
        return [m for m in self._memories.values() if m.vendor_id == vendor_id]

    def find_memories_by_type(self, memory_type: MemoryType) -> List[Memory]:
        return [m for m in self._memories.values() if m.type == memory_type]

    def find_memories_by_pattern(self, pattern_type: PatternType) -> List[Memory]:
        return [m for m in self._memories.values() if m.pattern.pattern_type == pattern_type]

    def get_all_memories(self) -> List[Memory]:
        return list(self._memories.values())

    def save_memory(self, memory: Memory) -> None:
        with self._lock:
            self._memories[memory.id] = memory
        logger.debug(f"Saved memory {memory.id} (confidence={memory.confidence:.3f})")

    def get_config_value(self, key: str) -> Optional[float]:
        return self._config.get(key)

    def set_config_value(self, key: str, value: float) -> None:
        with self._lock:
            self._config[key] = value
        logger.debug(f"Config {key} set to {value}")


def load_memories(source: Union[str, Path, List[Dict[str, Any]]]) -> List[Memory]:
    """
    Load memories from a YAML/JSON file or an already-parsed list of dicts.

    A file may hold a bare list or a mapping with a `memories` key.

    Raises:
        StoreUnavailableError: file cannot be read
        MemoryValidationError: a record is malformed or ids repeat
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to read memories from {path}: {e}")
            raise StoreUnavailableError(
                f"Cannot read memories from {path}", operation='load_memories', original_error=e
            ) from e
        logger.info(f"Loaded memory file: {path}")
    else:
        data = source

    if isinstance(data, dict):
        data = data.get('memories') or []
    if data is None:
        return []
    if not isinstance(data, list):
        raise MemoryValidationError(f"Expected a list of memories, got {type(data).__name__}")

    memories = [Memory.from_dict(record) for record in data]

    seen = set()
    for memory in memories:
        if memory.id in seen:
            raise MemoryValidationError(f"Duplicate memory id: {memory.id}", field_name='id', value=memory.id)
        seen.add(memory.id)

    return memories
