# src/ccscheck/variants.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from .align import GAP, AlignmentResult


class VariantType(str, Enum):
    SNP = "SNP"
    INSERTION = "INSERTION"
    DELETION = "DELETION"


@dataclass
class Variant:
    type: VariantType
    position: int             # alignment-local until translated by the processor
    length: int = 1
    ref_name: str = ""
    ref_bases: str = ""
    alt_bases: str = ""
    qv: int = 0
    at_end_of_alignment: bool = False


def _min_qv(quals: Sequence[Optional[int]]) -> int:
    vals = [q for q in quals if q is not None]
    return min(vals) if vals else 0


def call_variants(aln: AlignmentResult) -> List[Variant]:
    """
    Walk the alignment columns and report mismatches and gap runs.

    Positions count reference bases before the event, relative to the start
    of the alignment. Insertions sit before the reference base at their
    position. Deletions take the lowest QV of the read bases flanking them.
    """
    ref, qry, quals = aln.aligned_reference, aln.aligned_query, aln.aligned_qualities
    n = len(ref)
    last = n - 1
    out: List[Variant] = []
    ref_pos = 0
    i = 0
    while i < n:
        r, q = ref[i], qry[i]
        if r == GAP and q == GAP:
            i += 1
            continue
        if r != GAP and q != GAP:
            if r != q:
                out.append(Variant(
                    type=VariantType.SNP, position=ref_pos, length=1,
                    ref_bases=r, alt_bases=q, qv=_min_qv(quals[i:i + 1]),
                    at_end_of_alignment=(i == 0 or i == last),
                ))
            ref_pos += 1
            i += 1
            continue

        # gap run of a single kind
        j = i
        if q == GAP:
            while j < n and qry[j] == GAP and ref[j] != GAP:
                j += 1
            flank = [quals[k] for k in (i - 1, j) if 0 <= k < n]
            out.append(Variant(
                type=VariantType.DELETION, position=ref_pos, length=j - i,
                ref_bases=ref[i:j], alt_bases="", qv=_min_qv(flank),
                at_end_of_alignment=(i == 0 or j - 1 == last),
            ))
            ref_pos += j - i
        else:
            while j < n and ref[j] == GAP and qry[j] != GAP:
                j += 1
            out.append(Variant(
                type=VariantType.INSERTION, position=ref_pos, length=j - i,
                ref_bases="", alt_bases=qry[i:j], qv=_min_qv(quals[i:j]),
                at_end_of_alignment=(i == 0 or j - 1 == last),
            ))
        i = j
    return out
