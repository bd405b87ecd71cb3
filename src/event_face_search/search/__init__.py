"""Face search CLI: find an event's photos that match a selfie."""

import argparse


def main() -> None:
    """CLI entry point for selfie matching."""
    parser = argparse.ArgumentParser(description="Event face search")
    subparsers = parser.add_subparsers(dest="command")

    # match
    match_parser = subparsers.add_parser("match", help="Find photos matching a selfie")
    match_parser.add_argument("--event", required=True, help="Event ID")
    match_parser.add_argument("--selfie", required=True, help="Path to the selfie image")
    match_parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Max Euclidean distance on normalized embeddings (default: DEFAULT_MATCH_THRESHOLD)",
    )
    match_parser.add_argument(
        "--limit", type=int, default=None, help="Max results (default: 50, max: 100)"
    )
    match_parser.add_argument(
        "--device", default="cuda", help="Device: cuda or cpu (default: cuda)"
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    from event_face_search.log import setup_logging

    setup_logging()

    if args.command == "match":
        _cmd_match(args)


def _cmd_match(args: argparse.Namespace) -> None:
    """Match a selfie file against an event."""
    from pathlib import Path

    from event_face_search.api import face_search, face_search_available
    from event_face_search.db import get_connection
    from event_face_search.embedding.insightface_detector import InsightFaceDetector
    from event_face_search.errors import NoFaceDetectedError
    from event_face_search.manager.media import default_media_store
    from event_face_search.search.index import SimilarityIndex
    from event_face_search.search.query import FaceMatcher

    selfie_path = Path(args.selfie)
    if not selfie_path.exists():
        print(f"Error: {selfie_path} not found")
        return

    conn = get_connection()
    if not face_search_available(conn, args.event)["available"]:
        print(f"No processed faces for event {args.event}.")
        conn.close()
        return

    index = SimilarityIndex.from_connection(conn)
    matcher = FaceMatcher(InsightFaceDetector(device=args.device), index)
    try:
        matches = face_search(
            matcher,
            conn,
            default_media_store(),
            args.event,
            selfie_path.read_bytes(),
            threshold=args.threshold,
            limit=args.limit,
        )
    except NoFaceDetectedError as exc:
        print(exc.user_message)
        return
    finally:
        matcher.close()
        conn.close()

    for match in matches:
        print(
            f"{match['photoId']}  similarity={match['similarity']:.3f}  "
            f"distance={match['distance']:.3f}  {match['thumbnailUrl'] or '-'}"
        )
    print(f"{len(matches)} matching photos.")
