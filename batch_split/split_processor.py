#!/usr/bin/env python3
"""Split gigantic JSON files into one document per record with constant RAM."""

import argparse, itertools, logging, os, pathlib, threading, time
from concurrent.futures import ThreadPoolExecutor
from typing import Iterator, Optional

from jsonsplit.handles import DocumentWriteOperation
from jsonsplit.json_splitter import JSONSplitter

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 100000


def detect_json_structure(path) -> str:
    """Return 'array', 'object', or 'unknown'."""
    try:
        with open(path, 'rb') as f:
            while True:
                ch = f.read(1)
                if not ch:
                    return 'unknown'
                if not ch.isspace():
                    if ch == b'[':
                        return 'array'
                    if ch == b'{':
                        return 'object'
                    return 'unknown'
    except OSError as e:
        logger.error(f"detect structure failed: {e}")
        return 'unknown'


def write_document(operation: DocumentWriteOperation, output_dir: pathlib.Path) -> pathlib.Path:
    target = output_dir / operation.uri
    target.write_text(str(operation.content), encoding='utf-8')
    return target


def _drain(operations: Iterator[DocumentWriteOperation], output_dir: Optional[pathlib.Path],
           progress: Iterator[int], progress_lock: threading.Lock) -> int:
    written = 0
    for op in operations:
        if output_dir is not None:
            write_document(op, output_dir)
        written += 1
        # each worker logs the number it drew, never the shared count
        with progress_lock:
            done = next(progress)
        if done % PROGRESS_INTERVAL == 0:
            logger.info("%s documents", done)
    return written


def process(path: pathlib.Path, output_dir: Optional[pathlib.Path] = None, workers: int = 1) -> int:
    """Split ``path`` and write every document to ``output_dir``; just count when it is None."""
    start = time.time()
    structure = detect_json_structure(path)
    if structure != 'array':
        logger.warning("%s does not start with an array (%s); splitting the first array found", path, structure)
    if output_dir is not None:
        output_dir.mkdir(parents=True, exist_ok=True)

    splitter = JSONSplitter.make_array_splitter()
    progress = itertools.count(1)
    progress_lock = threading.Lock()
    with open(path, 'rb') as f:
        operations = splitter.split_write_operations(f)
        if workers <= 1:
            _drain(operations, output_dir, progress, progress_lock)
        else:
            # all workers pull from the one iterator; it serializes access to the stream
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = [pool.submit(_drain, operations, output_dir, progress, progress_lock)
                           for _ in range(workers)]
                for future in futures:
                    future.result()

    logger.info("Done %s documents in %.2fs", splitter.count, time.time()-start)
    return splitter.count


def cli(argv=None):
    ap = argparse.ArgumentParser(description="Split a large JSON array into one document per element")
    ap.add_argument("file", type=pathlib.Path)
    ap.add_argument("--output-dir", type=pathlib.Path, default=pathlib.Path("split_output"),
                    help="directory receiving one <uuid>.json file per document")
    ap.add_argument("--workers", type=int, default=1, help="threads writing documents")
    ap.add_argument("--dry-run", action="store_true", help="count documents without writing them")
    args = ap.parse_args(argv)

    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"),
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    if args.workers < 1:
        ap.error("--workers must be at least 1")
    output_dir = None if args.dry_run else args.output_dir
    return process(args.file, output_dir, workers=args.workers)


if __name__ == "__main__":
    cli()
