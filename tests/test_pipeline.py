import json

import pandas as pd
import pytest

from ccscheck.config import RunConfig
from ccscheck.coordinator import PipelineCoordinator
from ccscheck.filtering import FilterChain, FilterCounters, FilterSpec
from ccscheck.outputs import OutputMultiplexer
from ccscheck.pipeline import run_check
from ccscheck.processor import ReadProcessor

from conftest import make_alignment, make_read, write_fastq

REF = "ACGTACGTACGT"


class _ScriptedAligner:
    """Alignment per read id; raises for ids in `broken`."""

    def __init__(self, alignments, broken=()):
        self.alignments = alignments
        self.broken = set(broken)

    def align(self, read):
        if read.read_id in self.broken:
            raise RuntimeError(f"aligner exploded on {read.read_id}")
        return self.alignments.get(read.read_id)


class _Collect:
    name = "collect"

    def __init__(self):
        self.records = []
        self.finished = False

    def consume(self, record):
        self.records.append(record)

    def finish(self):
        self.finished = True


def test_ten_read_scenario(capsys):
    reads = [make_read(f"r{i}") for i in range(10)]
    alignments = {}
    for i in range(3):                       # one boundary variant each
        alignments[f"r{i}"] = make_alignment(REF, "T" + REF[1:], start=0)
    for i, start in ((3, 100), (4, 200)):    # one mid variant each, excluded below
        alignments[f"r{i}"] = make_alignment(REF, REF[:5] + "G" + REF[6:], start=start)
    for i in range(5, 9):
        alignments[f"r{i}"] = make_alignment(REF, REF, start=0)

    spec = FilterSpec([("chrT", 105), ("chrT", 205)])
    counters = FilterCounters()
    processor = ReadProcessor(_ScriptedAligner(alignments, broken={"r9"}), FilterChain(spec, counters))

    sink = _Collect()
    mux = OutputMultiplexer([sink], verbose=False)
    coord = PipelineCoordinator(reads, processor, workers=4, queue_size=3, verbose=False)
    for rec in coord.run():
        mux.consume(rec)
    coord.join()
    mux.finish_all()

    counts = counters.freeze()
    assert len(sink.records) == 9
    assert sink.finished
    assert counts.boundary == 3
    assert counts.excluded == 2
    assert all(rec.variants == [] for rec in sink.records)

    fail_lines = [ln for ln in capsys.readouterr().err.splitlines() if "CCS READ FAIL" in ln]
    assert len(fail_lines) == 1
    assert "r9" in fail_lines[0]


def _write_reads(tmp_path, ref_seq, n=6):
    d = tmp_path / "reads"
    d.mkdir()
    reads = []
    for i in range(n):
        start = 20 + i * 40
        seg = list(ref_seq[start:start + 80])
        seg[30] = "A" if seg[30] != "A" else "C"
        reads.append((f"m1/{i}/ccs", "".join(seg)))
    write_fastq(d / "part1.fastq", reads[: n // 2])
    write_fastq(d / "part2.fastq", reads[n // 2:])
    return d


def test_run_check_without_reference(tmp_path, ref_seq):
    reads = _write_reads(tmp_path, ref_seq)
    cfg = RunConfig(input=reads, outdir=tmp_path / "out", workers=3, verbose=False)
    result = run_check(cfg)

    assert result["delivered"] == 6
    assert result["excluded_at_end"] == 0
    assert result["excluded_by_filter"] is None
    assert result["source_error"] is None
    zmws = pd.read_csv(tmp_path / "out" / "zmws.csv")
    assert sorted(zmws["ZMW"]) == list(range(6))
    assert zmws["Reference"].isna().all()
    assert pd.read_csv(tmp_path / "out" / "variants.csv").empty
    for name in ("zscores.csv", "snrs.csv", "qv_calibration.csv", "qv_calibration.pdf"):
        assert (tmp_path / "out" / name).exists()

    summary = json.loads((tmp_path / "out" / "run_summary.json").read_text())
    assert summary["status"] == "ok"
    assert summary["counts"]["delivered"] == 6


def test_run_check_with_reference_and_filter(tmp_path, ref_seq, ref_fasta):
    reads = _write_reads(tmp_path, ref_seq)
    # read i carries a SNP at 20 + 40*i + 30; exclude the first two
    excl = tmp_path / "exclude.tsv"
    excl.write_text("chrT\t51\nchrT\t91\n")
    cfg = RunConfig(input=reads, outdir=tmp_path / "out", reference=ref_fasta,
                    filter_file=excl, workers=4, verbose=False)
    result = run_check(cfg)

    assert result["delivered"] == 6
    assert result["excluded_by_filter"] == 2
    assert result["excluded_at_end"] == 0
    variants = pd.read_csv(tmp_path / "out" / "variants.csv")
    assert sorted(variants["Pos"]) == [130, 170, 210, 250]
    assert set(variants["Ref"]) == {"chrT"}


def test_run_check_reports_source_error_and_keeps_outputs(tmp_path, ref_seq):
    reads = _write_reads(tmp_path, ref_seq)
    (reads / "part3.fastq").write_text("@broken\nACGTACGT\n+\nII\n")
    cfg = RunConfig(input=reads, outdir=tmp_path / "out", workers=2, verbose=False)
    result = run_check(cfg)

    assert result["delivered"] == 6
    assert result["source_error"]
    assert "part3.fastq" in result["source_error"][0]
    assert len(pd.read_csv(tmp_path / "out" / "zmws.csv")) == 6
    summary = json.loads((tmp_path / "out" / "run_summary.json").read_text())
    assert summary["status"] == "aborted"


def test_output_failure_closes_every_collector_and_writes_summary(tmp_path, ref_seq, monkeypatch):
    import ccscheck.outputs as outputs
    import ccscheck.pipeline as pipeline

    built = []

    def capture(outdir):
        collectors = outputs.build_collectors(outdir)
        built.extend(collectors)
        return collectors

    def full_disk(self, record):
        raise RuntimeError("disk full")

    monkeypatch.setattr(pipeline, "build_collectors", capture)
    monkeypatch.setattr(outputs.SnrMetrics, "consume", full_disk)

    reads = _write_reads(tmp_path, ref_seq)
    cfg = RunConfig(input=reads, outdir=tmp_path / "out", workers=2, verbose=False)
    with pytest.raises(RuntimeError, match="disk full"):
        run_check(cfg)

    csv_collectors = [c for c in built if isinstance(c, outputs._CsvCollector)]
    assert len(csv_collectors) == 3
    assert all(c._fh.closed for c in csv_collectors)
    assert (tmp_path / "out" / "zscores.csv").exists()
    summary = json.loads((tmp_path / "out" / "run_summary.json").read_text())
    assert summary["status"] == "failed"
    assert "disk full" in summary["output_error"][0]
