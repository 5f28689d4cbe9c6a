"""
POST /api/pull-lists/run - stream a multi-ZIP pull
==================================================

Request body (JSON):
    {"token": str, "zips": [str], "tags"?: [str], "importToHighLevel"?: bool}

The response is a chunked text stream: plain progress lines interleaved
with JSON lines ({"type": "phase"} / {"type": "csv"}), ending with
"Done." or "ERROR: <message>". Invalid requests get a 400 before any
stream is opened.
"""

import logging
import threading
from typing import Callable

from fastapi import Depends, FastAPI, Request
from fastapi.responses import PlainTextResponse, StreamingResponse

from pull_lists import __version__
from pull_lists.models import RunValidationError, describe_request, parse_run_request
from pull_lists.orchestrator import execute_run
from pull_lists.services.stream import ProgressStream
from pull_lists.services.working_set import LeadWorkingSet

logger = logging.getLogger(__name__)

RUN_PATH = "/api/pull-lists/run"

STREAM_HEADERS = {
    "cache-control": "no-cache, no-transform",
    "x-accel-buffering": "no",
}

app = FastAPI(title="pull-lists", version=__version__)


def get_working_set_factory() -> Callable[[str], LeadWorkingSet]:
    """Dependency: maps an account token to its lead working set."""
    return LeadWorkingSet


@app.get(RUN_PATH, response_class=PlainTextResponse)
async def run_info() -> str:
    return f"OK {RUN_PATH} (POST expected)"


@app.post(RUN_PATH)
async def run_pull_lists(
    request: Request,
    working_set_factory: Callable[[str], LeadWorkingSet] = Depends(get_working_set_factory),
):
    body = await request.body()
    try:
        run_request = parse_run_request(body)
    except RunValidationError as e:
        logger.info("Rejected pull request: %s", e)
        return PlainTextResponse(str(e), status_code=400)

    logger.info("Accepted pull request: %s", describe_request(run_request))

    stream = ProgressStream()
    # The run owns its own thread; a dropped connection does not stop it.
    worker = threading.Thread(
        target=execute_run,
        args=(run_request, working_set_factory(run_request.token), stream),
        name=f"pull-run-{run_request.zips[0]}",
        daemon=True,
    )
    worker.start()

    return StreamingResponse(
        stream.iter_lines(),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
    )


if __name__ == "__main__":
    import os

    import uvicorn

    from pull_lists.config.settings import get_settings

    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
