# src/ccscheck/outputs.py
from __future__ import annotations
import csv
import math
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

import numpy as np
import pandas as pd

from .processor import PipelineRecord
from .utils import _log, _log_err
from .variants import VariantType

__all__ = [
    "Collector", "CollectorError", "OutputMultiplexer", "build_collectors",
    "ZmwMetrics", "ZScoreMetrics", "VariantDump", "SnrMetrics", "QvCalibration",
]


class Collector(Protocol):
    name: str
    def consume(self, record: PipelineRecord) -> None: ...
    def finish(self) -> None: ...


class CollectorError(RuntimeError):
    def __init__(self, failures: List[Tuple[str, Exception]]):
        self.failures = failures
        names = ", ".join(f"{n} ({e})" for n, e in failures)
        super().__init__(f"{len(failures)} output(s) failed to finish: {names}")


# ---------- helpers ----------
def _fmt(x) -> str:
    if x is None:
        return ""
    if isinstance(x, float):
        return "" if math.isnan(x) else f"{x:.4f}"
    return str(x)


class _CsvCollector:
    """Streams rows to a CSV; the header is written on construction."""
    filename = ""
    columns: Tuple[str, ...] = ()

    def __init__(self, outdir: Path):
        self.path = Path(outdir) / self.filename
        self._fh = open(self.path, "w", newline="")
        self._w = csv.writer(self._fh)
        self._w.writerow(self.columns)
        self.rows = 0

    def _write(self, row) -> None:
        self._w.writerow([_fmt(x) for x in row])
        self.rows += 1

    def finish(self) -> None:
        self._fh.close()


# ---------- collectors ----------
class ZmwMetrics(_CsvCollector):
    """One row per read: identity, yield, alignment span and variant counts."""
    name = "zmws"
    filename = "zmws.csv"
    columns = ("Movie", "ZMW", "ReadId", "NumPasses", "Length", "ReadQuality", "MeanQV",
               "Reference", "RefStart", "RefEnd", "Reverse", "EditDistance",
               "NumSNPs", "NumInsertions", "NumDeletions")

    def consume(self, record: PipelineRecord) -> None:
        r, aln, variants = record.read, record.alignment, record.variants
        counts = {t: 0 for t in VariantType}
        for v in variants or []:
            counts[v.type] += 1
        self._write([
            r.movie, r.hole_number, r.read_id, r.num_passes, len(r.sequence), r.read_quality, r.mean_qv,
            aln.reference if aln else None,
            aln.reference_start if aln else None,
            aln.reference_end if aln else None,
            int(aln.reverse) if aln else None,
            aln.edit_distance if aln else None,
            counts[VariantType.SNP] if variants is not None else None,
            counts[VariantType.INSERTION] if variants is not None else None,
            counts[VariantType.DELETION] if variants is not None else None,
        ])


class VariantDump(_CsvCollector):
    name = "variants"
    filename = "variants.csv"
    columns = ("Ref", "Pos", "Type", "Length", "RefBases", "AltBases", "QV", "AtEnd",
               "Movie", "ZMW", "ReadId")

    def consume(self, record: PipelineRecord) -> None:
        r = record.read
        for v in record.variants or []:
            self._write([v.ref_name, v.position, v.type.value, v.length, v.ref_bases, v.alt_bases,
                         v.qv, int(v.at_end_of_alignment), r.movie, r.hole_number, r.read_id])


class SnrMetrics(_CsvCollector):
    name = "snrs"
    filename = "snrs.csv"
    columns = ("Movie", "ZMW", "ReadId", "SnrA", "SnrC", "SnrG", "SnrT")

    def consume(self, record: PipelineRecord) -> None:
        r = record.read
        if not r.snr:
            return
        snr = list(r.snr[:4]) + [None] * (4 - len(r.snr[:4]))
        self._write([r.movie, r.hole_number, r.read_id] + snr)


class ZScoreMetrics:
    """
    Per read mean QV standardized against the whole run, next to the
    instrument's per-pass z-scores (zs tag) when the read carries them.
    Needs the full run, so rows are written on finish.
    """
    name = "zscores"
    filename = "zscores.csv"

    def __init__(self, outdir: Path):
        self.path = Path(outdir) / self.filename
        self._ids: List[Tuple[str, Optional[int], str]] = []
        self._mean_qv: List[float] = []
        self._passes: List[str] = []

    def consume(self, record: PipelineRecord) -> None:
        r = record.read
        self._ids.append((r.movie, r.hole_number, r.read_id))
        self._mean_qv.append(r.mean_qv)
        self._passes.append(";".join(f"{z:.4f}" for z in r.zscores))

    def finish(self) -> None:
        qv = np.asarray(self._mean_qv, dtype=float)
        z = np.full(qv.shape, np.nan)
        ok = np.isfinite(qv)
        if ok.sum() > 1:
            sd = qv[ok].std(ddof=1)
            if sd > 0:
                z[ok] = (qv[ok] - qv[ok].mean()) / sd
        df = pd.DataFrame(self._ids, columns=["Movie", "ZMW", "ReadId"])
        df["ZMW"] = df["ZMW"].astype("Int64")
        df["MeanQV"] = qv
        df["QVZScore"] = z
        df["PassZScores"] = self._passes
        df.to_csv(self.path, index=False, float_format="%.4f")


class QvCalibration:
    """
    Empirical accuracy per reported QV over aligned read bases:
    match / mismatch / insertion counts and the observed Phred QV.
    """
    name = "qv_calibration"
    filename = "qv_calibration.csv"
    plot_filename = "qv_calibration.pdf"
    MAX_QV = 93

    def __init__(self, outdir: Path):
        self.path = Path(outdir) / self.filename
        self.plot_path = Path(outdir) / self.plot_filename
        n = self.MAX_QV + 1
        self.match = np.zeros(n, dtype=np.int64)
        self.mismatch = np.zeros(n, dtype=np.int64)
        self.insertion = np.zeros(n, dtype=np.int64)

    def consume(self, record: PipelineRecord) -> None:
        aln = record.alignment
        if aln is None:
            return
        for r, q, qv in zip(aln.aligned_reference, aln.aligned_query, aln.aligned_qualities):
            if qv is None or q == "-":
                continue
            qv = min(max(int(qv), 0), self.MAX_QV)
            if r == "-":
                self.insertion[qv] += 1
            elif r == q:
                self.match[qv] += 1
            else:
                self.mismatch[qv] += 1

    def table(self) -> pd.DataFrame:
        total = self.match + self.mismatch + self.insertion
        errors = self.mismatch + self.insertion
        with np.errstate(divide="ignore", invalid="ignore"):
            rate = np.where(total > 0, errors / total, np.nan)
            emp = np.where(errors > 0, -10.0 * np.log10(rate), np.nan)
        df = pd.DataFrame({
            "QV": np.arange(self.MAX_QV + 1),
            "Match": self.match,
            "Mismatch": self.mismatch,
            "Insertion": self.insertion,
            "Total": total,
            "EmpiricalQV": emp,
        })
        return df[df["Total"] > 0].reset_index(drop=True)

    def finish(self) -> None:
        df = self.table()
        df.to_csv(self.path, index=False, float_format="%.3f")
        self._plot(df)

    def _plot(self, df: pd.DataFrame) -> None:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
        import matplotlib.backends.backend_pdf as mpdf

        with mpdf.PdfPages(self.plot_path) as pdf:
            fig, ax = plt.subplots(figsize=(5, 5))
            if df.empty:
                ax.text(0.5, 0.5, "no aligned bases", ha="center", va="center")
            else:
                emp = df["EmpiricalQV"].dropna()
                ax.scatter(df["QV"], df["EmpiricalQV"], s=12)
                hi = max(float(df["QV"].max()), float(emp.max()) if not emp.empty else 0.0)
                ax.plot([0, hi], [0, hi], ls="--", lw=0.8, color="grey")
            ax.set_xlabel("Reported QV")
            ax.set_ylabel("Empirical QV")
            ax.set_title("QV calibration")
            pdf.savefig(fig)
            plt.close(fig)


COLLECTOR_TYPES = (ZmwMetrics, ZScoreMetrics, VariantDump, SnrMetrics, QvCalibration)


def build_collectors(outdir: Path) -> List[Collector]:
    return [cls(outdir) for cls in COLLECTOR_TYPES]


# ---------- multiplexer ----------
class OutputMultiplexer:
    """
    Hands every record to each registered collector in registration order,
    on the consumer thread. finish_all() runs once and attempts every
    collector even when an earlier one fails.
    """

    def __init__(self, collectors: Optional[List[Collector]] = None, verbose: bool = True):
        self._collectors: List[Collector] = []
        self._started = False
        self._finished = False
        self.verbose = verbose
        self.consumed = 0
        for c in collectors or []:
            self.register(c)

    @property
    def collectors(self) -> List[Collector]:
        return list(self._collectors)

    def register(self, collector: Collector) -> None:
        if self._started:
            raise RuntimeError("cannot register an output after records were consumed")
        self._collectors.append(collector)

    def consume(self, record: PipelineRecord) -> None:
        if self._finished:
            raise RuntimeError("outputs already finished")
        self._started = True
        for c in self._collectors:
            c.consume(record)
        self.consumed += 1

    def finish_all(self) -> None:
        if self._finished:
            raise RuntimeError("outputs already finished")
        self._finished = True
        failures: List[Tuple[str, Exception]] = []
        for c in self._collectors:
            name = getattr(c, "name", type(c).__name__)
            try:
                c.finish()
            except Exception as e:
                _log_err(f"[outputs] {name} failed to finish: {e}")
                failures.append((name, e))
            else:
                _log(f"[outputs] wrote {name}", self.verbose)
        if failures:
            raise CollectorError(failures)


def summarize_outputs(collectors: List[Collector]) -> Dict[str, str]:
    return {getattr(c, "name", type(c).__name__): str(getattr(c, "path", "")) for c in collectors}
