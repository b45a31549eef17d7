# src/ccscheck/processor.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, List, Optional

from .align import AlignmentResult, ReferenceAligner
from .extract import Read
from .filtering import FilterChain
from .variants import Variant, call_variants


@dataclass(frozen=True)
class PipelineRecord:
    read: Read
    alignment: Optional[AlignmentResult] = None
    variants: Optional[List[Variant]] = None


def process_read(
    read: Read,
    aligner: Optional[ReferenceAligner],
    chain: FilterChain,
    caller: Callable[[AlignmentResult], List[Variant]] = call_variants,
) -> PipelineRecord:
    """
    Align one read, call variants in reference coordinates and filter them.
    Without an aligner, or when the read does not align, only the read is
    carried. Errors propagate to the caller.
    """
    if aligner is None:
        return PipelineRecord(read)
    aln = aligner.align(read)
    if aln is None:
        return PipelineRecord(read)

    variants = caller(aln)
    for v in variants:
        v.position += aln.reference_start
        v.ref_name = aln.reference
    variants, _ = chain.apply(variants)
    return PipelineRecord(read, aln, variants)


class ReadProcessor:
    """process_read bound to one run's aligner and filter chain."""

    def __init__(self, aligner: Optional[ReferenceAligner], chain: FilterChain,
                 caller: Callable[[AlignmentResult], List[Variant]] = call_variants):
        self.aligner = aligner
        self.chain = chain
        self.caller = caller

    def __call__(self, read: Read) -> PipelineRecord:
        return process_read(read, self.aligner, self.chain, caller=self.caller)
