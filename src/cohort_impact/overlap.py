"""
Cohort Overlap Analyzer
=======================

Computes the exact set-intersection structure between labelled cohorts.

Every identifier in the union of the cohorts gets a membership signature:
the subset of cohorts that contain it. Identifiers sharing a signature
form one overlap cell. The cells partition the union, so their counts
always sum to the number of distinct identifiers.

Key Features:
- Single pass over the union, O(total members x N cohorts)
- Never enumerates the 2^N - 1 subsets, so any realistic N works
- Optional sharding across worker processes with a commutative merge
- Tabular summaries (per-cell table, pairwise intersection matrix)

Preconditions
-------------
Identifiers must implement consistent ``__eq__`` and ``__hash__``. This
cannot be checked in general; unhashable identifiers are rejected.
"""

import multiprocessing as mp
from collections import defaultdict
from dataclasses import dataclass, field
from functools import partial
from typing import Dict, FrozenSet, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import InvalidInputError


@dataclass(frozen=True)
class Cohort:
    """A named, immutable collection of unique member identifiers."""
    name: str
    members: FrozenSet[Hashable] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, 'members', _as_member_set(self.name, self.members))

    def __len__(self) -> int:
        return len(self.members)


@dataclass(frozen=True)
class OverlapCell:
    """Identifiers belonging to exactly ``cohorts`` and no other cohort."""
    cohorts: FrozenSet[str]
    names: Tuple[str, ...]  # same names as `cohorts`, in input order
    count: int
    members: Optional[FrozenSet[Hashable]] = None

    @property
    def label(self) -> str:
        return ' & '.join(self.names)

    @property
    def degree(self) -> int:
        return len(self.names)


@dataclass
class OverlapReport:
    """Full overlap partition of a set of cohorts."""
    cohort_names: Tuple[str, ...]
    cohort_sizes: Dict[str, int]
    union_size: int
    cells: Dict[FrozenSet[str], OverlapCell]

    def __len__(self) -> int:
        return len(self.cells)

    def __iter__(self):
        return iter(self.sorted_cells())

    def sorted_cells(self) -> List[OverlapCell]:
        """Cells ordered by degree, then by cohort input order."""
        position = {name: i for i, name in enumerate(self.cohort_names)}
        return sorted(
            self.cells.values(),
            key=lambda cell: (cell.degree, [position[n] for n in cell.names])
        )

    def _key(self, names: Sequence[str]) -> FrozenSet[str]:
        unknown = [n for n in names if n not in self.cohort_sizes]
        if unknown:
            raise KeyError(f"Unknown cohort(s): {unknown}")
        return frozenset(names)

    def count(self, *names: str) -> int:
        """Number of identifiers in exactly the named cohorts (0 if none)."""
        cell = self.cells.get(self._key(names))
        return cell.count if cell is not None else 0

    def members(self, *names: str) -> FrozenSet[Hashable]:
        """Identifiers in exactly the named cohorts."""
        cell = self.cells.get(self._key(names))
        if cell is None:
            return frozenset()
        if cell.members is None:
            raise ValueError("Report was computed with keep_members=False")
        return cell.members

    def to_frame(self) -> pd.DataFrame:
        """
        One row per non-empty cell.

        Columns are one boolean flag per cohort, followed by ``label``,
        ``degree``, ``count`` and ``share`` (count over union size).
        """
        rows = []
        for cell in self.sorted_cells():
            row = {name: name in cell.cohorts for name in self.cohort_names}
            row.update({
                'label': cell.label,
                'degree': cell.degree,
                'count': cell.count,
                'share': cell.count / self.union_size if self.union_size else 0.0
            })
            rows.append(row)

        columns = list(self.cohort_names) + ['label', 'degree', 'count', 'share']
        return pd.DataFrame(rows, columns=columns)

    def pairwise_intersections(self) -> pd.DataFrame:
        """
        Matrix of ``|A & B|`` for every pair of cohorts.

        Derived from the cells: a cell contributes its count to every pair
        of cohorts in its signature. The diagonal holds the cohort sizes.
        """
        names = list(self.cohort_names)
        index = {name: i for i, name in enumerate(names)}
        matrix = np.zeros((len(names), len(names)), dtype=int)

        for cell in self.cells.values():
            positions = [index[n] for n in cell.names]
            for i in positions:
                for j in positions:
                    matrix[i, j] += cell.count

        return pd.DataFrame(matrix, index=names, columns=names)

    def summary(self) -> Dict:
        return {
            'cohorts': dict(self.cohort_sizes),
            'union_size': self.union_size,
            'n_cells': len(self.cells),
            'cells': {cell.label: cell.count for cell in self.sorted_cells()}
        }


CohortInput = Union[Mapping[str, Iterable[Hashable]], Sequence[Cohort]]


def _as_member_set(name: str, members: Iterable[Hashable]) -> FrozenSet[Hashable]:
    if isinstance(members, (str, bytes)):
        raise InvalidInputError(
            f"Cohort {name!r}: members must be a collection of identifiers, not a string"
        )
    try:
        return frozenset(members)
    except TypeError as exc:
        raise InvalidInputError(
            f"Cohort {name!r} contains unhashable identifiers: {exc}"
        ) from exc


def _normalize_cohorts(cohorts: CohortInput) -> List[Cohort]:
    if isinstance(cohorts, Mapping):
        normalized = [Cohort(name, members) for name, members in cohorts.items()]
    else:
        normalized = []
        for cohort in cohorts:
            if not isinstance(cohort, Cohort):
                raise InvalidInputError(
                    f"Expected Cohort instances, got {type(cohort).__name__}"
                )
            normalized.append(cohort)

    if not normalized:
        raise InvalidInputError("At least one cohort is required")

    seen = set()
    duplicates = []
    for cohort in normalized:
        if cohort.name in seen:
            duplicates.append(cohort.name)
        seen.add(cohort.name)
    if duplicates:
        raise InvalidInputError(f"Cohort names must be unique, duplicated: {duplicates}")

    return normalized


def _signature_partial(
    cohorts: Sequence[Tuple[str, FrozenSet[Hashable]]],
    identifiers: Iterable[Hashable],
    keep_members: bool
) -> Dict[Tuple[str, ...], Tuple[int, Optional[set]]]:
    """Accumulate signature -> (count, members) over a shard of identifiers."""
    counts = defaultdict(int)
    members = defaultdict(set) if keep_members else None

    for identifier in identifiers:
        signature = tuple(name for name, cohort_members in cohorts if identifier in cohort_members)
        counts[signature] += 1
        if keep_members:
            members[signature].add(identifier)

    return {
        signature: (count, members[signature] if keep_members else None)
        for signature, count in counts.items()
    }


def merge_overlap_counts(
    partials: Iterable[Dict[Tuple[str, ...], Tuple[int, Optional[set]]]]
) -> Dict[Tuple[str, ...], Tuple[int, Optional[set]]]:
    """
    Merge per-shard signature partials.

    The merge sums counts and unions member sets, so shards can be
    combined in any order.
    """
    merged = {}
    for partial_result in partials:
        for signature, (count, members) in partial_result.items():
            if signature not in merged:
                merged[signature] = (count, set(members) if members is not None else None)
                continue
            total, merged_members = merged[signature]
            if merged_members is not None and members is not None:
                merged_members |= members
            merged[signature] = (total + count, merged_members)
    return merged


def compute_overlap(
    cohorts: CohortInput,
    keep_members: bool = True,
    n_jobs: int = 1
) -> OverlapReport:
    """
    Compute the overlap partition of a set of cohorts.

    Parameters
    ----------
    cohorts : mapping or sequence of Cohort
        Either ``{name: iterable of identifiers}`` or a list of ``Cohort``.
        Duplicate identifiers within a cohort collapse. Empty cohorts are
        allowed and contribute no cells.
    keep_members : bool
        Store the identifier set of every cell, not just its count
    n_jobs : int
        Number of worker processes. Values above 1 shard the union of
        identifiers and merge the partial results.

    Returns
    -------
    OverlapReport
        Non-empty cells keyed by the frozenset of cohort names

    Raises
    ------
    InvalidInputError
        No cohorts, duplicated cohort names, or unhashable identifiers
    """
    normalized = _normalize_cohorts(cohorts)
    names = tuple(cohort.name for cohort in normalized)
    cohort_sets = [(cohort.name, cohort.members) for cohort in normalized]

    union = frozenset().union(*(cohort.members for cohort in normalized))

    if n_jobs > 1 and len(union) > n_jobs:
        identifiers = list(union)
        shards = [identifiers[i::n_jobs] for i in range(n_jobs)]
        worker = partial(_signature_partial, cohort_sets, keep_members=keep_members)
        with mp.Pool(processes=n_jobs) as pool:
            partials = pool.map(worker, shards)
        accumulated = merge_overlap_counts(partials)
    else:
        accumulated = _signature_partial(cohort_sets, union, keep_members)

    cells = {}
    for signature, (count, members) in accumulated.items():
        key = frozenset(signature)
        cells[key] = OverlapCell(
            cohorts=key,
            names=signature,
            count=count,
            members=frozenset(members) if members is not None else None
        )

    return OverlapReport(
        cohort_names=names,
        cohort_sizes={cohort.name: len(cohort) for cohort in normalized},
        union_size=len(union),
        cells=cells
    )


def cohorts_from_frame(
    frame: pd.DataFrame,
    segment_col: str = 'segment',
    id_col: str = 'identifier'
) -> List[Cohort]:
    """
    Build cohorts from a long table of (segment, identifier) rows.

    Segments keep the order of their first appearance in the table.
    """
    missing = [col for col in (segment_col, id_col) if col not in frame.columns]
    if missing:
        raise InvalidInputError(f"Missing columns: {missing}")

    grouped = frame.dropna(subset=[id_col]).groupby(segment_col, sort=False)[id_col]
    return [Cohort(str(segment), members.tolist()) for segment, members in grouped]
