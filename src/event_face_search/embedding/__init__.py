"""Face processing CLI: detect faces in pending photos and report progress."""

import argparse


def main() -> None:
    """CLI entry point for face processing."""
    parser = argparse.ArgumentParser(description="Event face search processing")
    subparsers = parser.add_subparsers(dest="command")

    # process
    proc_parser = subparsers.add_parser(
        "process", help="Detect faces in an event's pending photos"
    )
    proc_parser.add_argument("--event", required=True, help="Event ID")
    proc_parser.add_argument("--device", default="cuda", help="Device: cuda or cpu (default: cuda)")
    proc_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Max number of photos to process (default: all)",
    )
    proc_parser.add_argument(
        "--batch-size", type=int, default=None, help="Photos per queue fetch (default: BATCH_SIZE)"
    )
    proc_parser.add_argument(
        "--concurrency", type=int, default=None, help="Worker threads (default: CONCURRENCY)"
    )

    # status
    status_parser = subparsers.add_parser("status", help="Show face processing status")
    status_parser.add_argument("--event", required=True, help="Event ID")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    from event_face_search.log import setup_logging

    setup_logging()

    if args.command == "process":
        _cmd_process(args)
    elif args.command == "status":
        _cmd_status(args)


def _cmd_process(args: argparse.Namespace) -> None:
    """Run the batch processor with a progress bar."""
    import signal
    import threading

    from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

    from event_face_search.config import BATCH_SIZE, CONCURRENCY, INSIGHTFACE_MODEL_NAME
    from event_face_search.db import get_connection
    from event_face_search.embedding.face_repository import get_stats
    from event_face_search.embedding.insightface_detector import InsightFaceDetector
    from event_face_search.embedding.processor import BatchProcessor
    from event_face_search.errors import DetectorUnavailableError
    from event_face_search.manager.media import default_media_store

    conn = get_connection()
    stats = get_stats(conn, args.event)
    total = stats.pending + stats.processing
    if args.limit is not None:
        total = min(total, args.limit)
    if total == 0:
        print("No pending photos.")
        conn.close()
        return

    print(f"Found {total} photos to process.")
    print(f"Loading InsightFace model {INSIGHTFACE_MODEL_NAME} on {args.device}...")
    detector = InsightFaceDetector(device=args.device)
    processor = BatchProcessor(
        conn,
        detector,
        default_media_store(),
        batch_size=args.batch_size or BATCH_SIZE,
        concurrency=args.concurrency or CONCURRENCY,
    )
    cancel = threading.Event()

    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TextColumn("{task.completed}/{task.total}"),
    ) as progress:
        task = progress.add_task("Detecting faces", total=total)
        # Ctrl-C stops scheduling new photos; in-flight ones are recorded
        signal.signal(signal.SIGINT, lambda signum, frame: cancel.set())
        try:
            summary = processor.run(
                args.event,
                limit=args.limit,
                cancel=cancel,
                on_progress=lambda photo, outcome: progress.advance(task),
            )
        except DetectorUnavailableError as e:
            conn.close()
            raise SystemExit(f"\nStopped: {e}. Unstarted photos were returned to the queue.") from e

    conn.close()
    print("\nCancelled." if summary.cancelled else "\nDone.")
    print(f"  Processed: {summary.processed}")
    print(f"  No face found: {summary.no_face_found}")
    print(f"  Faces detected: {summary.faces_found}")
    if summary.failed > 0:
        print(f"  Failed: {summary.failed}")
    if summary.skipped > 0:
        print(f"  Skipped (handled by another run): {summary.skipped}")


def _cmd_status(args: argparse.Namespace) -> None:
    """Show face processing status."""
    from event_face_search.config import DB_PATH
    from event_face_search.db import get_connection
    from event_face_search.embedding.face_repository import get_stats

    conn = get_connection()
    stats = get_stats(conn, args.event)
    conn.close()
    done = stats.processed + stats.no_face_found + stats.failed
    print(f"DB: {DB_PATH}")
    print(f"Processed: {done}/{stats.total} photos")
    print(f"Faces detected: {stats.faces_found}")
    if stats.processed > 0:
        print(f"Average faces per photo with faces: {stats.faces_found / stats.processed:.1f}")
    if stats.failed > 0:
        print(f"Failed: {stats.failed}")
    if stats.total > 0:
        print(f"Progress: {done / stats.total * 100:.1f}%")
