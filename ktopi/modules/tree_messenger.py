"""
Tree messenger: binds an EventRecord to the branches of a ROOT tree

Entries are served from a cached chunk read with uproot. Every read
either refreshes the whole record or leaves it untouched.

Example usage:
    with TreeMessenger.from_file("merged_mc_v2.root", "Tree") as messenger:
        for ientry in messenger.iter_entries():
            record = messenger.record
            if record.PassAll == 0:
                continue
            kaon_scores = record.Reco.view("PIDKaon")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, Optional

import awkward as ak
import numpy as np
import uproot
from uproot.deserialization import DeserializationError

from .branch_config import EventSchema
from .event_record import EventRecord
from .exceptions import BindError, BranchMissingError, DataLoadError

DEFAULT_CHUNK_SIZE = 10000


class TreeMessenger:
    """Cursor over the entries of one bound tree"""

    def __init__(self, schema: Optional[EventSchema] = None, chunk_size: int = DEFAULT_CHUNK_SIZE):
        """
        Create an unbound messenger

        Parameters:
        - schema: Event schema (default: the packaged branches_config.toml)
        - chunk_size: Number of entries decoded per uproot read
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")

        self.logger = logging.getLogger("KtoPi.TreeMessenger")
        self.schema = schema if schema is not None else EventSchema()
        self.record = EventRecord(self.schema)
        self.chunk_size = chunk_size
        self.tree = None
        self.file_path = None
        self.current_entry = -1
        self._file = None
        self._drop_chunk()

    @classmethod
    def bind(cls, store, tree_name: str = "Tree", schema: Optional[EventSchema] = None,
             chunk_size: int = DEFAULT_CHUNK_SIZE) -> "TreeMessenger":
        """
        Bind a new messenger to `tree_name` in an open uproot directory

        Raises:
        - BindError: tree absent or not a TTree
        - BranchMissingError: any declared branch absent
        """
        messenger = cls(schema, chunk_size)
        messenger.initialize(store, tree_name)
        return messenger

    @classmethod
    def from_file(cls, path, tree_name: str = "Tree", schema: Optional[EventSchema] = None,
                  chunk_size: int = DEFAULT_CHUNK_SIZE) -> "TreeMessenger":
        """
        Open a ROOT file and bind to one of its trees

        The returned messenger owns the file and closes it in close().

        Raises:
        - DataLoadError: file cannot be opened
        - BindError / BranchMissingError: as for bind()
        """
        path = Path(path)
        try:
            store = uproot.open(path)
        except (OSError, ValueError) as e:
            raise DataLoadError(f"Cannot open input file '{path}': {e}") from e

        try:
            messenger = cls.bind(store, tree_name, schema, chunk_size)
        except BindError:
            store.close()
            raise
        messenger._file = store
        return messenger

    def initialize(self, store, tree_name: str = "Tree") -> None:
        """
        Resolve every declared branch of `tree_name`

        On failure the messenger stays unbound.
        """
        if store is None:
            raise BindError("No input directory to bind to")

        file_path = getattr(store, "file_path", None)
        try:
            tree = store[tree_name]
        except KeyError:
            raise BindError(f"Tree '{tree_name}' not found in {file_path or 'input'}") from None

        if not isinstance(tree, uproot.TTree):
            raise BindError(
                f"Object '{tree_name}' in {file_path or 'input'} is a "
                f"{type(tree).__name__}, not a TTree"
            )

        validation = self.schema.validate_branches(list(tree.keys()))
        if validation["missing"]:
            raise BranchMissingError(validation["missing"], file_path)

        self.tree = tree
        self.file_path = file_path
        self.current_entry = -1
        self._drop_chunk()
        self.logger.info(
            f"Bound {validation['found']} branches of '{tree_name}' "
            f"({tree.num_entries} entries)"
        )

    def entry_count(self) -> int:
        if self.tree is None:
            return 0
        return int(self.tree.num_entries)

    def read_entry(self, ientry: int) -> bool:
        """
        Load entry `ientry` into self.record

        Returns:
        - True if the record now holds entry `ientry`; False if the entry is
          out of range, could not be decoded, or decoded fewer array values
          than its counts require. On False the record is unchanged.
        """
        if self.tree is None:
            return False
        if not 0 <= ientry < self.entry_count():
            return False
        if not self._chunk_start <= ientry < self._chunk_stop:
            if not self._load_chunk(ientry):
                return False

        local = ientry - self._chunk_start
        staged = {}
        for name, spec in self.schema.collections.items():
            count = int(self._columns[spec.count_branch][local])
            n = max(0, min(count, spec.capacity))
            rows = {}
            for field in spec.fields:
                branch = spec.branch_name(field)
                offsets = self._offsets[branch]
                start, stop = offsets[local], offsets[local + 1]
                if stop - start < n:
                    self.logger.warning(
                        f"Entry {ientry}: {branch} holds {stop - start} values "
                        f"but {spec.count_branch} = {count}"
                    )
                    return False
                rows[field] = self._content[branch][start:start + n]
            staged[name] = (count, rows)

        self.record.load_scalars({name: self._columns[name][local] for name in self.schema.scalars})
        for name, (count, rows) in staged.items():
            self.record[name].load(count, rows)
        self.current_entry = ientry
        return True

    def iter_entries(self, max_entries: int = -1) -> Iterator[int]:
        """
        Read entries in order, yielding the index of each successful read

        Parameters:
        - max_entries: Stop after this many entries (-1 = all)
        """
        n_entries = self.entry_count()
        if 0 < max_entries < n_entries:
            n_entries = max_entries
        for ientry in range(n_entries):
            if self.read_entry(ientry):
                yield ientry

    def _load_chunk(self, ientry: int) -> bool:
        """Decode the chunk containing `ientry` into flat numpy buffers."""
        start = (ientry // self.chunk_size) * self.chunk_size
        stop = min(start + self.chunk_size, self.entry_count())
        try:
            arrays = self.tree.arrays(
                self.schema.branch_names(), entry_start=start, entry_stop=stop, library="ak"
            )
        except (OSError, ValueError, DeserializationError) as e:
            self.logger.error(f"Failed to read entries [{start}, {stop}): {e}")
            return False

        if len(arrays) != stop - start:
            self.logger.error(
                f"Read {len(arrays)} entries from [{start}, {stop}), expected {stop - start}"
            )
            return False

        columns = {}
        for name in list(self.schema.scalars) + self.schema.count_branches():
            columns[name] = ak.to_numpy(arrays[name])

        offsets = {}
        content = {}
        for branch in self.schema.array_branches():
            column = arrays[branch]
            counts = ak.to_numpy(ak.num(column, axis=1))
            offsets[branch] = np.concatenate(([0], np.cumsum(counts)))
            content[branch] = ak.to_numpy(ak.flatten(column, axis=1))

        self._columns = columns
        self._offsets = offsets
        self._content = content
        self._chunk_start = start
        self._chunk_stop = stop
        self.logger.debug(f"Loaded entries [{start}, {stop})")
        return True

    def _drop_chunk(self) -> None:
        self._columns = {}
        self._offsets = {}
        self._content = {}
        self._chunk_start = 0
        self._chunk_stop = 0

    def close(self) -> None:
        """Release the chunk cache, and the file if this messenger opened it."""
        self._drop_chunk()
        self.tree = None
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "TreeMessenger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
