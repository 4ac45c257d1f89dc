"""
In-memory event record

One EventRecord holds a single event of the strangeness ntuple as a
structure of arrays: scalars, plus one ParticleCollection per particle
type. Collection arrays are allocated once at the schema capacity and
overwritten in place on every entry read.
"""

from __future__ import annotations

from typing import Iterator

import numpy as np

from .branch_config import CollectionSpec, EventSchema


class ParticleCollection:
    """
    Fixed-capacity sibling arrays with an explicit count

    `count` is the raw value of the count branch and may exceed the
    capacity; only the first `clipped_count` slots hold valid data.
    """

    def __init__(self, spec: CollectionSpec):
        self.spec = spec
        self.count = 0
        self._filled = 0
        self._arrays = {
            name: np.zeros(spec.capacity, dtype=dtype) for name, dtype in spec.fields.items()
        }

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def capacity(self) -> int:
        return self.spec.capacity

    @property
    def clipped_count(self) -> int:
        """Number of valid entries, never more than the capacity."""
        return max(0, min(int(self.count), self.spec.capacity))

    @property
    def overflow(self) -> bool:
        return self.count > self.spec.capacity

    def view(self, field: str, limit: int | None = None) -> np.ndarray:
        """
        Bounds-checked view of the valid prefix of one field

        Parameters:
        - field: Field name without the collection prefix (e.g. 'PIDKaon')
        - limit: Optional further cap on the number of entries

        Returns:
        - Read-only numpy view of length min(count, capacity, limit)
        """
        try:
            array = self._arrays[field]
        except KeyError:
            raise KeyError(f"Collection '{self.name}' has no field '{field}'") from None
        n = self.clipped_count if limit is None else max(0, min(self.clipped_count, limit))
        prefix = array[:n]
        prefix.flags.writeable = False
        return prefix

    def __getitem__(self, field: str) -> np.ndarray:
        return self.view(field)

    def __len__(self) -> int:
        return self.clipped_count

    def fields(self) -> list[str]:
        return list(self._arrays)

    def load(self, count: int, rows: dict[str, np.ndarray]) -> None:
        """
        Overwrite the collection in place

        Parameters:
        - count: Raw value of the count branch
        - rows: Field name -> values for this event, each already cut to
                the number of slots to fill (at most the capacity)
        """
        n = 0
        for name, array in self._arrays.items():
            values = rows[name]
            n = len(values)
            array[:n] = values
            if n < self._filled:
                array[n:self._filled] = 0
        self._filled = n
        self.count = int(count)

    def reset(self) -> None:
        for array in self._arrays.values():
            array[:self._filled] = 0
        self._filled = 0
        self.count = 0


class EventRecord:
    """
    Fixed-layout record for one event

    Scalars are reachable as attributes (record.ThrustZ); collections by
    name (record.Reco, record["Reco"]).
    """

    def __init__(self, schema: EventSchema):
        object.__setattr__(self, "schema", schema)
        object.__setattr__(self, "scalars", {name: dtype.type(0) for name, dtype in schema.scalars.items()})
        object.__setattr__(
            self,
            "collections",
            {name: ParticleCollection(spec) for name, spec in schema.collections.items()},
        )

    def __getattr__(self, name: str):
        scalars = self.__dict__.get("scalars", {})
        if name in scalars:
            return scalars[name]
        collections = self.__dict__.get("collections", {})
        if name in collections:
            return collections[name]
        for collection in collections.values():
            if name == collection.spec.count_branch:
                return collection.count
        raise AttributeError(f"EventRecord has no field '{name}'")

    def __setattr__(self, name: str, value) -> None:
        raise AttributeError("EventRecord fields are only written by the tree messenger")

    def __getitem__(self, collection: str) -> ParticleCollection:
        return self.collections[collection]

    def __iter__(self) -> Iterator[ParticleCollection]:
        return iter(self.collections.values())

    def load_scalars(self, values: dict) -> None:
        scalars = self.scalars
        for name, dtype in self.schema.scalars.items():
            scalars[name] = dtype.type(values[name])

    def resolve_reference(self, collection: str, field: str, index: int) -> int | None:
        """
        Follow a cross-collection index reference

        Parameters:
        - collection: Collection holding the reference (e.g. 'KShort')
        - field: Reference field (e.g. 'Reco1ID')
        - index: Entry of `collection` to dereference

        Returns:
        - Valid index into the target collection, or None when the
          reference is the unmatched sentinel or points past the valid prefix
        """
        source = self.collections[collection]
        target_name = source.spec.references.get(field)
        if target_name is None:
            raise KeyError(f"'{collection}.{field}' is not a reference field")
        if not 0 <= index < source.clipped_count:
            raise IndexError(
                f"{collection} index {index} outside [0, {source.clipped_count})"
            )
        value = int(source.view(field)[index])
        if value == self.schema.unmatched:
            return None
        if 0 <= value < self.collections[target_name].clipped_count:
            return value
        return None

    def reset(self) -> None:
        for name, dtype in self.schema.scalars.items():
            self.scalars[name] = dtype.type(0)
        for collection in self.collections.values():
            collection.reset()
