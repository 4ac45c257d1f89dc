"""
Mock data generators for testing the analysis.

Builds synthetic strangeness-tree events and writes them to ROOT files
with uproot, so the binding layer and the event loop can be tested
without real data files.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import awkward as ak
import numpy as np
import uproot

from ktopi.modules.branch_config import EventSchema

# Calibration used when a test does not care about it (non-singular)
DEFAULT_CALIBRATION = {
    "EfficiencyKAsK": 0.80,
    "EfficiencyKAsPi": 0.10,
    "EfficiencyKAsP": 0.05,
    "EfficiencyPiAsK": 0.05,
    "EfficiencyPiAsPi": 0.90,
    "EfficiencyPiAsP": 0.01,
    "EfficiencyPAsK": 0.10,
    "EfficiencyPAsPi": 0.05,
    "EfficiencyPAsP": 0.80,
}


def reco_particle(
    pid_kaon: int = 0,
    pid_pion: int = 0,
    pid_proton: int = 0,
    energy: float = 10.0,
    charge: float = 1.0,
    **fields: Any,
) -> Dict[str, Any]:
    """
    One reconstructed particle as a field -> value dictionary.

    Args:
        pid_kaon, pid_pion, pid_proton: Categorical PID scores
        energy: RecoE
        charge: RecoCharge
        **fields: Any other Reco field (e.g. EfficiencyKAsK=0.7)

    Returns:
        Dictionary of Reco fields
    """
    particle = dict(DEFAULT_CALIBRATION)
    particle.update(
        E=energy,
        Charge=charge,
        PIDKaon=pid_kaon,
        PIDPion=pid_pion,
        PIDProton=pid_proton,
    )
    particle.update(fields)
    return particle


def gen_particle(pdg_id: int, **fields: Any) -> Dict[str, Any]:
    """One generator-level particle with the given PDG ID."""
    particle = {"ID": pdg_id, "E": 5.0}
    particle.update(fields)
    return particle


def make_event(
    reco: Optional[List[Dict[str, Any]]] = None,
    gen: Optional[List[Dict[str, Any]]] = None,
    nch: int = 10,
    thrust_z: float = 0.0,
    counts: Optional[Dict[str, int]] = None,
    others: Optional[Dict[str, List[Dict[str, Any]]]] = None,
    **scalars: Any,
) -> Dict[str, Any]:
    """
    Build one synthetic event.

    Args:
        reco: Reconstructed particles (see reco_particle)
        gen: Generator particles (see gen_particle)
        nch: Charged multiplicity (Nch)
        thrust_z: z component of the thrust axis
        counts: Count-branch values to write instead of the list lengths,
                e.g. {"NReco": 12} to fake an inconsistent entry
        others: Entries of the other collections, e.g. {"KShort": [...]}
        **scalars: Any other scalar branch (e.g. Run=3)

    Returns:
        Event dictionary understood by write_strangeness_file
    """
    event_scalars = {"Ecm": 91.2, "Nch": nch, "ThrustZ": thrust_z, "PassAll": 1}
    event_scalars.update(scalars)
    collections = {"Reco": list(reco or []), "Gen": list(gen or [])}
    collections.update(others or {})
    return {
        "scalars": event_scalars,
        "collections": collections,
        "counts": dict(counts or {}),
    }


def passing_event(n_kaon_tags: int, n_pion_tags: int, n_other: int = 0, **kwargs: Any) -> Dict[str, Any]:
    """
    Event passing the default selection with the given tagged tracks.

    Every particle carries E = 10 GeV; at least five particles are used so
    that the visible energy is above half of 91.2 GeV.
    """
    reco = [reco_particle(pid_kaon=2) for _ in range(n_kaon_tags)]
    reco += [reco_particle(pid_pion=2) for _ in range(n_pion_tags)]
    reco += [reco_particle() for _ in range(n_other)]
    while len(reco) < 5:
        reco.append(reco_particle(charge=0.0))
    return make_event(reco=reco, **kwargs)


def build_branches(events: Sequence[Dict[str, Any]], schema: EventSchema) -> Dict[str, Any]:
    """
    Columnar branch data for a list of events.

    Fields not given for a particle default to 0, reference fields to the
    unmatched sentinel.
    """
    branches: Dict[str, Any] = {}

    for name, dtype in schema.scalars.items():
        branches[name] = np.array(
            [event["scalars"].get(name, 0) for event in events], dtype=dtype
        )

    for name, spec in schema.collections.items():
        rows = [event["collections"].get(name, []) for event in events]
        lengths = np.array([len(r) for r in rows], dtype=np.int64)

        branches[spec.count_branch] = np.array(
            [event["counts"].get(spec.count_branch, len(r)) for event, r in zip(events, rows)],
            dtype=np.int64,
        )

        for field, dtype in spec.fields.items():
            default = schema.unmatched if field in spec.references else 0
            flat = np.array(
                [particle.get(field, default) for row in rows for particle in row], dtype=dtype
            )
            branches[spec.branch_name(field)] = ak.unflatten(flat, lengths)

    return branches


def write_strangeness_file(
    output_path: Union[str, Path],
    events: Sequence[Dict[str, Any]],
    tree_name: str = "Tree",
    schema: Optional[EventSchema] = None,
    drop_branches: Sequence[str] = (),
) -> Path:
    """
    Create a mock strangeness ROOT file.

    Args:
        output_path: Path where ROOT file will be created
        events: Events built with make_event / passing_event
        tree_name: Name of the TTree
        schema: Schema to follow (packaged schema if None)
        drop_branches: Branches to leave out, to provoke binding errors

    Returns:
        Path to created ROOT file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    schema = schema if schema is not None else EventSchema()

    branches = build_branches(events, schema)
    for name in drop_branches:
        branches.pop(name)

    # Jagged branches are typed as var * dtype; uproot adds an n<Branch> counter for each
    types = {
        name: array.type.content if isinstance(array, ak.Array) else array.dtype
        for name, array in branches.items()
    }

    with uproot.recreate(output_path) as file:
        tree = file.mktree(tree_name, types)
        if events:
            tree.extend(branches)

    return output_path


def fill_record(record, event: Dict[str, Any]) -> None:
    """
    Load a synthetic event straight into an EventRecord, bypassing ROOT.

    Only the first `capacity` particles of each collection are copied,
    as the tree messenger does.
    """
    schema = record.schema
    record.load_scalars({name: event["scalars"].get(name, 0) for name in schema.scalars})

    for name, spec in schema.collections.items():
        row = event["collections"].get(name, [])
        count = event["counts"].get(spec.count_branch, len(row))
        kept = row[:spec.capacity]
        values = {}
        for field, dtype in spec.fields.items():
            default = schema.unmatched if field in spec.references else 0
            values[field] = np.array([particle.get(field, default) for particle in kept], dtype=dtype)
        record[name].load(count, values)
