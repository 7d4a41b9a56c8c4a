"""
This module defines a process-wide store of configuration overrides, consulted by
`instrumented.env.get_env_or_default` when a key is not set in the environment.
It plays the role that system properties play for JVM applications: values are set
programmatically by the entry point (or by tests), never read from files.
"""

import threading
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

PropertiesType = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


class PropertyStore:
    def __init__(self, values: Optional[PropertiesType] = None) -> None:
        self._lock = threading.Lock()
        self._values: Dict[str, str] = dict(values or {})

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._values.get(key, default)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError("Property values must be strings.")
        with self._lock:
            self._values[key] = value

    def update(self, values: PropertiesType) -> None:
        items = dict(values)
        for value in items.values():
            if not isinstance(value, str):
                raise TypeError("Property values must be strings.")
        with self._lock:
            self._values.update(items)

    def remove(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"<PropertyStore {sorted(self._values)}>"


system_properties = PropertyStore()
