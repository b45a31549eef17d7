from pathlib import Path
from typing import Any, Dict, Optional
import json, os, time

from tqdm import tqdm

from .align import ReferenceAligner
from .config import RunConfig
from .coordinator import PipelineCoordinator
from .extract import ReadSource, ReadSourceError
from .filtering import FilterChain, FilterCounters, FilterSpec
from .outputs import CollectorError, OutputMultiplexer, build_collectors, summarize_outputs
from .processor import ReadProcessor
from .utils import _log, _log_err, chain_messages

VERSION = "0.1.0"

# --------------------------------------------------------------------
# Public entrypoint
# --------------------------------------------------------------------
def run_check(cfg: RunConfig, version: str = VERSION) -> Dict[str, Any]:
    """
    Process every read of cfg.input and write the metric tables into cfg.outdir.

    Steps: read source → align + call + filter (worker pool) → bounded queue
           → outputs (zmws, zscores, variants, snrs, qv_calibration)

    A failure while reading the input stops production; everything read up
    to that point is still written and the failure is reported in the result.
    A failure while writing outputs is raised, after every collector was
    finished and run_summary.json was written with status "failed".

    Returns:
      {"delivered", "failed_reads", "excluded_at_end", "excluded_by_filter",
       "source_error", "output_error", "outputs", "summary"}
    """
    started = time.time()
    cfg.ensure_outdir()

    source = ReadSource(cfg.input)
    aligner = ReferenceAligner.from_fasta(cfg.reference, cfg.max_error_rate) if cfg.call_variants else None
    spec = FilterSpec.load(cfg.filter_file) if cfg.filter_file else None
    if spec is not None:
        _log(f"[pipeline] loaded {len(spec):,} excluded positions from {cfg.filter_file}", cfg.verbose)

    counters = FilterCounters()
    chain = FilterChain(spec, counters)
    collectors = build_collectors(cfg.outdir)
    mux = OutputMultiplexer(collectors, verbose=cfg.verbose)
    coord = PipelineCoordinator(source, ReadProcessor(aligner, chain),
                                workers=cfg.workers, queue_size=cfg.queue_size, verbose=cfg.verbose)
    _log(f"[pipeline] input={cfg.input}  workers={coord.workers}  "
         f"align={'on' if aligner else 'off'}  filter={'on' if spec else 'off'}", cfg.verbose)

    records = coord.run()
    consume_error: Optional[Exception] = None
    try:
        for rec in tqdm(records, desc="[pipeline] reads", unit="read", disable=not cfg.verbose):
            mux.consume(rec)
    except Exception as e:
        _log_err(f"[pipeline] writing outputs failed after {coord.delivered} read(s): {e}")
        consume_error = e
    finally:
        records.close()

    source_error: Optional[ReadSourceError] = None
    finish_error: Optional[CollectorError] = None
    try:
        coord.join()
    except ReadSourceError as e:
        source_error = e
    finally:
        # every collector is finished (and its file closed) even when join or consume failed
        try:
            mux.finish_all()
        except CollectorError as e:
            finish_error = e
    counts = counters.freeze()

    output_error = consume_error or finish_error
    result = {
        "delivered": coord.delivered,
        "failed_reads": coord.failed.value,
        "excluded_at_end": counts.boundary,
        "excluded_by_filter": counts.excluded if spec is not None else None,
        "source_error": chain_messages(source_error) if source_error else None,
        "output_error": chain_messages(output_error) if output_error else None,
        "outputs": summarize_outputs(collectors),
        "summary": str(cfg.summary_path()),
    }
    write_summary(cfg.summary_path(), make_payload(cfg, result, started, version))
    if output_error is not None:
        raise output_error
    return result

# --------------------------------------------------------------------
# Run summary
# --------------------------------------------------------------------
def make_payload(cfg: RunConfig, result: Dict[str, Any], started: float, version: str) -> Dict[str, Any]:
    if result.get("output_error"):
        status = "failed"
    elif result.get("source_error"):
        status = "aborted"
    else:
        status = "ok"
    return {
        "status": status,
        "created_at": time.strftime("%Y-%m-%dT%H:%M:%S%z", time.localtime()),
        "ccscheck_version": version,
        "inputs": {
            "reads": str(cfg.input),
            "reference": str(cfg.reference) if cfg.reference else None,
            "filter": str(cfg.filter_file) if cfg.filter_file else None,
        },
        "workers": cfg.workers,
        "hostname": os.uname().nodename if hasattr(os, "uname") else "unknown",
        "pid": os.getpid(),
        "duration_sec": round(time.time() - started, 3),
        "counts": {k: result[k] for k in ("delivered", "failed_reads", "excluded_at_end", "excluded_by_filter")},
        "source_error": result.get("source_error"),
        "output_error": result.get("output_error"),
        "outputs": result.get("outputs", {}),
    }

def write_summary(path: Path, payload: Dict[str, Any]) -> None:
    tmp = Path(str(path) + ".tmp")
    with tmp.open("w") as f:
        json.dump(payload, f, indent=2, sort_keys=True)
        f.write("\n")
    os.replace(tmp, path)
