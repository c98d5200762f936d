"""Run the ingestion pipeline over pending (or selected) documents."""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from citerag.factory import build_pipeline
from citerag.ingestion.pipeline import ProcessingResult, ProcessingStatus


def _print_progress(document_id: str, status: ProcessingStatus) -> None:
    line = f"  [{document_id}] {status.progress:3d}% {status.stage.value}: {status.message}"
    if status.error:
        line += f" ({status.error})"
    print(line)


def _print_result(result: ProcessingResult) -> None:
    if result.success:
        print(
            f"  OK {result.document_id} -- {result.chunk_count} chunks "
            f"via {result.extraction_method} (confidence {result.confidence})"
        )
    else:
        print(f"  FAILED {result.document_id}: {result.error}")


def run(document_ids: list[str], reprocess: bool = False, show_stats: bool = False) -> int:
    """Process the given documents (or all pending ones); returns the failure count."""
    pipeline = build_pipeline()

    if show_stats:
        stats = pipeline.get_processing_stats()
        print(
            f"Documents: {stats.total} total, {stats.pending} pending, "
            f"{stats.processing} processing, {stats.completed} completed, {stats.failed} failed"
        )
        return 0

    if document_ids:
        results = []
        for document_id in document_ids:
            def progress(status: ProcessingStatus, doc_id: str = document_id) -> None:
                _print_progress(doc_id, status)

            if reprocess:
                results.append(pipeline.reprocess_document(document_id, progress))
            else:
                results.append(pipeline.process_document(document_id, progress))
    else:
        print("Processing all pending documents...")
        results = pipeline.process_pending_documents(_print_progress)

    for result in results:
        _print_result(result)
    failed = sum(1 for r in results if not r.success)
    print(f"\nDone! {len(results) - failed} succeeded, {failed} failed.")
    return failed


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("documents", nargs="*", help="document ids (default: all pending)")
    parser.add_argument("--reprocess", action="store_true", help="delete chunks and start over")
    parser.add_argument("--stats", action="store_true", help="print status counts and exit")
    args = parser.parse_args()
    sys.exit(1 if run(args.documents, args.reprocess, args.stats) else 0)
