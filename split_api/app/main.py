#!/usr/bin/env python3
from fastapi import FastAPI, UploadFile, File, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response, StreamingResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.background import BackgroundTask
import aiofiles, logging, tempfile, os
from pathlib import Path
from jsonsplit.errors import MalformedStreamError
from jsonsplit.json_splitter import JSONSplitter

app = FastAPI(title="JSON-Split API")
logger = logging.getLogger(__name__)

request_counter = Counter("split_requests_total", "Total JSON uploads")
documents_counter = Counter("split_documents_total", "Documents split out of uploads")
process_duration = Histogram("split_process_seconds", "Time spent splitting")


async def spool_upload(file: UploadFile):
    """Copy the upload to a temp file; returns (path, bytes written).

    The temp file is removed again if the copy fails.
    """
    chunk_size = int(os.environ.get("SPLIT_UPLOAD_CHUNK_BYTES", 8*1024*1024))
    fd, tmp_path = tempfile.mkstemp(suffix=".json")
    os.close(fd)
    total = 0
    try:
        async with aiofiles.open(tmp_path, "wb") as tmp:
            while True:
                chunk = await file.read(chunk_size)
                if not chunk:
                    break
                await tmp.write(chunk)
                total += len(chunk)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise
    return tmp_path, total


def split_to_uris(path):
    splitter = JSONSplitter.make_array_splitter()
    with open(path, "rb") as f:
        uris = [op.uri for op in splitter.split_write_operations(f)]
    return uris, splitter.count


def unlink_quietly(path):
    Path(path).unlink(missing_ok=True)


@app.get("/health", tags=["ops"])
def health():
    return {"status": "healthy"}

@app.get("/metrics", tags=["ops"])
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

@app.post("/split/file", tags=["split"])
async def split_file(file: UploadFile = File(...)):
    request_counter.inc()
    tmp_path = None
    try:
        tmp_path, total = await spool_upload(file)
        with process_duration.time():
            uris, count = await run_in_threadpool(split_to_uris, tmp_path)
        documents_counter.inc(len(uris))
        return JSONResponse({"filename": file.filename, "bytes": total,
                             "documents": count, "uris": uris})
    except MalformedStreamError as e:
        logger.warning("rejected %s: %s", file.filename, e)
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"split failed for {file.filename}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    finally:
        if tmp_path is not None:
            unlink_quietly(tmp_path)

@app.post("/split/stream", tags=["split"])
async def split_stream(file: UploadFile = File(...)):
    """Stream each split document back as one NDJSON line.

    The first document is pulled before answering so a broken upload still gets a 400.
    """
    request_counter.inc()
    tmp_path = f = None
    try:
        tmp_path, _ = await spool_upload(file)
        f = open(tmp_path, "rb")
        handles = JSONSplitter.make_array_splitter().split(f)
        first = await run_in_threadpool(next, handles, None)
    except Exception as e:
        if f is not None:
            f.close()
        if tmp_path is not None:
            unlink_quietly(tmp_path)
        if isinstance(e, MalformedStreamError):
            logger.warning("rejected %s: %s", file.filename, e)
            raise HTTPException(status_code=400, detail=str(e))
        logger.error(f"split failed for {file.filename}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    def documents():
        try:
            handle = first
            while handle is not None:
                documents_counter.inc()
                yield handle.content + "\n"
                handle = next(handles, None)
        finally:
            f.close()
            unlink_quietly(tmp_path)

    # the background task covers responses whose body is never iterated
    return StreamingResponse(documents(), media_type="application/x-ndjson",
                             background=BackgroundTask(unlink_quietly, tmp_path))

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
