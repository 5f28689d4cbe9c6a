"""End-to-end orchestrator for a multi-ZIP pull.

Coordinates the full run: pre-delete → for each ZIP (build → poll →
export → cleanup delete) → done, streaming progress as it goes.
"""

from __future__ import annotations

import logging
from itertools import chain
from typing import Optional

from pull_lists.config.settings import Settings, get_settings
from pull_lists.models import RunRequest, describe_request
from pull_lists.services import csv_export, homeowners, page_fetcher
from pull_lists.services.polling import SYSTEM_CLOCK, Clock, PollState, poll_until_count_equals
from pull_lists.services.stream import ProgressStream
from pull_lists.services.working_set import LeadWorkingSet


logger = logging.getLogger(__name__)


class PipelineTimeoutError(Exception):
    """Raised when a poll loop exceeds its budget."""
    pass


class PipelineError(Exception):
    """Raised when a region hits an unrecoverable error."""
    pass


def wait_for_count(
    working_set: LeadWorkingSet,
    target: int,
    timeout_seconds: float,
    label: str,
    stream: ProgressStream,
    settings: Settings,
    clock: Clock = SYSTEM_CLOCK,
) -> bool:
    """Poll the live lead count until it equals ``target``.

    Returns:
        True when the count converged, False on timeout
    """
    state = poll_until_count_equals(
        working_set.count,
        target,
        timeout_seconds,
        label,
        emit=stream.line,
        clock=clock,
        interval_seconds=settings.poll_interval_seconds,
    )
    return state is PollState.CONVERGED


def clear_working_set(
    working_set: LeadWorkingSet,
    current: int,
    label: str,
    stream: ProgressStream,
    settings: Settings,
    clock: Clock = SYSTEM_CLOCK,
) -> bool:
    """Issue one delete sized to ``current`` and wait for the count to hit 0."""
    working_set.delete_all(current)
    return wait_for_count(
        working_set, 0, settings.delete_timeout_seconds, label, stream, settings, clock
    )


def export_region_csv(
    working_set: LeadWorkingSet,
    zip_code: str,
    stream: ProgressStream,
    settings: Optional[Settings] = None,
) -> str:
    """Fetch every lead page, keep homeowners with a mobile and render the CSV.

    Page failures are reported on the stream and contribute no rows.
    """
    settings = settings or get_settings()

    total = working_set.count()
    if total <= 0:
        stream.line(f"[{zip_code}] Nothing to export (0 leads).")
        return csv_export.empty_csv()

    pages = page_fetcher.page_count(total, settings.leads_per_page)
    stream.line(
        f"[{zip_code}] Exporting {total} leads across {pages} page(s) "
        f"with concurrency={min(settings.max_concurrency, pages)} ..."
    )

    def on_page(index: int, page_total: int, rows) -> None:
        stream.line(f"[{zip_code}] Page {index + 1}/{page_total} parsed {len(rows)} homeowner row(s).")

    def on_error(index: int, err: page_fetcher.PageFetchError) -> None:
        stream.line(f"[{zip_code}] Error fetching page at begin={err.begin}: {err.cause}")

    slots = page_fetcher.fetch_pages(
        total,
        settings.leads_per_page,
        settings.max_concurrency,
        fetch_page=lambda begin: working_set.fetch_page(begin, settings.leads_per_page),
        parse_page=homeowners.parse_homeowners_from_page,
        on_page=on_page,
        on_error=on_error,
    )

    doc = csv_export.build_homeowners_csv(chain.from_iterable(slots))
    stream.line(
        f"[{zip_code}] CSV built with {len(doc.rows)} homeowner row(s) after de-duplication "
        f"(phone pairs: {doc.max_phones}, email cols: {doc.max_emails})."
    )
    logger.info("ZIP %s exported %d homeowner row(s) from %d lead(s)", zip_code, len(doc.rows), total)
    return doc.text


def _run_region(
    working_set: LeadWorkingSet,
    zip_code: str,
    stream: ProgressStream,
    settings: Settings,
    clock: Clock,
) -> None:
    stream.line(f"[{zip_code}] Building list...")
    target = working_set.build(zip_code)
    stream.line(f"[{zip_code}] Build count (expected): {target}")

    stream.line(f"[{zip_code}] Polling count until it equals {target} ...")
    if not wait_for_count(
        working_set, target, settings.build_timeout_seconds, f"build:{zip_code}", stream, settings, clock
    ):
        raise PipelineTimeoutError(f"[{zip_code}] Timed out waiting for build to reach {target}.")
    stream.line(f"[{zip_code}] Build complete.")

    stream.line(f"[{zip_code}] Starting export (homeowner-only)...")
    csv_text = export_region_csv(working_set, zip_code, stream, settings)
    stream.csv(zip_code, f"{zip_code}.csv", csv_text)

    stream.line(f"[{zip_code}] Deleting all leads (cleanup)...")
    current = working_set.count()
    if not clear_working_set(working_set, current, f"delete:{zip_code}", stream, settings, clock):
        raise PipelineTimeoutError(f"[{zip_code}] Timed out waiting for delete to finish (count->0).")
    stream.line(f"[{zip_code}] Cleanup delete complete.")
    stream.line(f"[{zip_code}] Finished.")


def run_pull(
    request: RunRequest,
    working_set: LeadWorkingSet,
    stream: ProgressStream,
    settings: Optional[Settings] = None,
    clock: Clock = SYSTEM_CLOCK,
) -> None:
    """Run every requested ZIP against the account's working set.

    ZIPs run strictly one after another: the account has a single working
    set and a second build would land in the first one's export. The first
    failure aborts the run; later ZIPs are not attempted.

    Raises:
        PipelineTimeoutError if a build or delete does not converge in time
        PipelineError for any other failure inside a ZIP
        ExternalServiceError if the initial count or delete fails
    """
    settings = settings or get_settings()
    logger.info("Starting pull: %s", describe_request(request))

    stream.phase("Starting run...")

    stream.line("Phase 0 - Detecting existing leads...")
    current = working_set.count()
    stream.line(f"Leads already detected: {current}")

    if current > 0:
        stream.line("Deleting existing leads...")
        if not clear_working_set(working_set, current, "delete:init", stream, settings, clock):
            raise PipelineTimeoutError("Timed out waiting for initial delete to finish (count->0).")
        stream.line("Initial delete complete (count=0).")
    else:
        stream.line("No existing leads, nothing to delete.")

    for zip_code in request.zips:
        stream.phase(f"\n— ZIP {zip_code} —")
        try:
            _run_region(working_set, zip_code, stream, settings, clock)
        except (PipelineTimeoutError, PipelineError):
            raise
        except Exception as e:
            raise PipelineError(f"[{zip_code}] {e}") from e
        logger.info("ZIP %s finished", zip_code)

    logger.info("Pull complete for %d ZIP(s)", len(request.zips))


def execute_run(
    request: RunRequest,
    working_set: LeadWorkingSet,
    stream: ProgressStream,
    settings: Optional[Settings] = None,
    clock: Clock = SYSTEM_CLOCK,
) -> bool:
    """Run a pull and terminate the stream with "Done." or "ERROR: ...".

    Never raises; the stream is always closed.

    Returns:
        True on success
    """
    try:
        run_pull(request, working_set, stream, settings=settings, clock=clock)
        stream.line("Done.")
        return True
    except Exception as e:
        logger.error("Pull failed: %s", e, exc_info=not isinstance(e, (PipelineError, PipelineTimeoutError)))
        stream.line(f"ERROR: {e}")
        return False
    finally:
        stream.close()


if __name__ == "__main__":
    """CLI entry point: run a pull locally and write one CSV per ZIP."""
    import argparse
    import os
    import sys
    import threading
    from pathlib import Path

    from dotenv import load_dotenv

    from pull_lists.models import RunValidationError, parse_run_request
    from pull_lists.services.stream import CsvEvent, PhaseEvent, decode_line

    load_dotenv(".env.local")
    load_dotenv(".env")

    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    parser = argparse.ArgumentParser(description="Pull homeowner lists per ZIP from DealMachine")
    parser.add_argument("--token", default=os.getenv("DEALMACHINE_TOKEN"), help="Account token")
    parser.add_argument("--zips", nargs="+", required=True, help="5-digit ZIP codes, in run order")
    parser.add_argument("--output-dir", default=".", help="Directory for <zip>.csv files")

    args = parser.parse_args()

    try:
        run_request = parse_run_request({"token": args.token or "", "zips": args.zips})
    except RunValidationError as e:
        print(f"Invalid request: {e}", file=sys.stderr)
        sys.exit(2)

    out_dir = Path(args.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    progress = ProgressStream()
    runner = threading.Thread(
        target=execute_run,
        args=(run_request, LeadWorkingSet(run_request.token), progress),
        name="pull-run",
        daemon=True,
    )
    runner.start()

    failed = False
    for raw in progress.iter_lines():
        event = decode_line(raw)
        if isinstance(event, CsvEvent):
            path = out_dir / event.filename
            path.write_text(event.csv_text(), encoding="utf-8")
            print(f"Wrote {path}")
        elif isinstance(event, PhaseEvent):
            print(event.message)
        else:
            if event.text.startswith("ERROR:"):
                failed = True
            print(event.text)

    runner.join()
    sys.exit(1 if failed else 0)
