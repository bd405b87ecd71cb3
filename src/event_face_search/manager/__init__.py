"""Photo management CLI: register event photos and manage processing state."""

import argparse

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp"}


def main() -> None:
    """CLI entry point for photo management."""
    parser = argparse.ArgumentParser(description="Event face search photo manager")
    subparsers = parser.add_subparsers(dest="command")

    # init-db
    subparsers.add_parser("init-db", help="Initialize the database schema")

    # import-photos
    imp_parser = subparsers.add_parser(
        "import-photos", help="Register a directory of photos (under DATA_DIR) for an event"
    )
    imp_parser.add_argument("--event", required=True, help="Event ID")
    imp_parser.add_argument("--dir", required=True, help="Directory relative to DATA_DIR")
    imp_parser.add_argument(
        "--thumbnail-dir",
        help="Directory (relative to DATA_DIR) holding thumbnails with the same file names",
    )

    # pending
    pending_parser = subparsers.add_parser("pending", help="List photos awaiting processing")
    pending_parser.add_argument("--event", required=True, help="Event ID")
    pending_parser.add_argument(
        "--limit", type=int, default=100, help="Max photos to list (default: 100)"
    )

    # stats
    stats_parser = subparsers.add_parser("stats", help="Show processing counts for an event")
    stats_parser.add_argument("--event", required=True, help="Event ID")

    # reprocess
    re_parser = subparsers.add_parser(
        "reprocess", help="Reset a processed, faceless or failed photo to pending"
    )
    re_parser.add_argument("--photo-id", required=True, help="Photo ID")

    # retry-failed
    retry_parser = subparsers.add_parser(
        "retry-failed", help="Reset all failed photos of an event to pending"
    )
    retry_parser.add_argument("--event", required=True, help="Event ID")

    # delete-photo
    del_parser = subparsers.add_parser("delete-photo", help="Delete a photo and its faces")
    del_parser.add_argument("--photo-id", required=True, help="Photo ID")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    from event_face_search.log import setup_logging

    setup_logging()

    if args.command == "init-db":
        from event_face_search.db import get_connection

        conn = get_connection()
        conn.close()
        print("Database initialized successfully.")

    elif args.command == "import-photos":
        _cmd_import_photos(args)

    elif args.command == "pending":
        _cmd_pending(args)

    elif args.command == "stats":
        _cmd_stats(args)

    elif args.command == "reprocess":
        _cmd_reprocess(args)

    elif args.command == "retry-failed":
        from event_face_search.db import get_connection
        from event_face_search.embedding.face_repository import retry_failed_photos

        conn = get_connection()
        count = retry_failed_photos(conn, args.event)
        conn.close()
        print(f"Reset {count} failed photos to pending.")

    elif args.command == "delete-photo":
        from event_face_search.db import get_connection
        from event_face_search.embedding.face_repository import delete_photo

        conn = get_connection()
        deleted = delete_photo(conn, args.photo_id)
        conn.close()
        print("Deleted." if deleted else f"Photo not found: {args.photo_id}")


def _cmd_import_photos(args: argparse.Namespace) -> None:
    """Register every image file in a directory as a pending photo."""
    import uuid

    from event_face_search.config import DATA_DIR
    from event_face_search.db import get_connection
    from event_face_search.manager.repository import count_photos, register_photos
    from event_face_search.models import Photo

    source_dir = DATA_DIR / args.dir
    if not source_dir.is_dir():
        print(f"Error: {source_dir} is not a directory")
        return

    files = sorted(
        p for p in source_dir.rglob("*") if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES
    )
    photos = []
    for path in files:
        relative_path = path.relative_to(DATA_DIR).as_posix()
        thumbnail_path = None
        if args.thumbnail_dir:
            candidate = DATA_DIR / args.thumbnail_dir / path.name
            if candidate.exists():
                thumbnail_path = candidate.relative_to(DATA_DIR).as_posix()
        # Stable id so re-importing the same directory is a no-op
        photo_id = str(uuid.uuid5(uuid.NAMESPACE_URL, f"{args.event}/{relative_path}"))
        photos.append(
            Photo(
                id=photo_id,
                event_id=args.event,
                storage_path=relative_path,
                thumbnail_path=thumbnail_path,
            )
        )

    conn = get_connection()
    before = count_photos(conn, args.event)
    register_photos(conn, photos)
    after = count_photos(conn, args.event)
    conn.close()
    print(f"Registered {after - before} new photos for event {args.event} ({len(files)} files).")


def _cmd_pending(args: argparse.Namespace) -> None:
    """List pending photos with their thumbnail URLs."""
    from event_face_search.api import pending_photos
    from event_face_search.db import get_connection
    from event_face_search.manager.media import default_media_store

    conn = get_connection()
    photos = pending_photos(conn, default_media_store(), args.event, limit=args.limit)
    conn.close()
    for photo in photos:
        print(f"{photo['photoId']}  {photo['thumbnailUrl'] or '-'}")
    print(f"{len(photos)} pending photos.")


def _cmd_stats(args: argparse.Namespace) -> None:
    """Show processing counts for an event."""
    from event_face_search.api import processing_stats
    from event_face_search.db import get_connection

    conn = get_connection()
    stats = processing_stats(conn, args.event)
    conn.close()
    print(f"Event: {args.event}")
    print(f"  Pending:       {stats['pending']}")
    print(f"  Processing:    {stats['processing']}")
    print(f"  Processed:     {stats['processed']}")
    print(f"  No face found: {stats['noFaceFound']}")
    print(f"  Failed:        {stats['failed']}")
    print(f"  Faces found:   {stats['facesFound']}")
    if stats["total"] > 0:
        done = stats["processed"] + stats["noFaceFound"] + stats["failed"]
        print(f"Progress: {done / stats['total'] * 100:.1f}%")


def _cmd_reprocess(args: argparse.Namespace) -> None:
    """Reset one photo to pending."""
    from event_face_search.db import get_connection
    from event_face_search.embedding.face_repository import reprocess_photo
    from event_face_search.errors import InvalidStateTransitionError, PhotoNotFoundError

    conn = get_connection()
    try:
        reprocess_photo(conn, args.photo_id)
    except (InvalidStateTransitionError, PhotoNotFoundError) as exc:
        print(f"Error: {exc}")
        return
    finally:
        conn.close()
    print(f"Photo {args.photo_id} reset to pending.")
