"""CLI: object-client upload | modify | delete | list | link | watch."""
import argparse
import json
import sys
from pathlib import Path

from .client import ObjectClient


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="object-client", description="Talk to the object gateway API")
    parser.add_argument("--base-url", default="http://localhost:8080", help="API base URL")
    sub = parser.add_subparsers(dest="command", required=True)

    # upload
    p_upload = sub.add_parser("upload", help="Upload a file (key defaults to its name)")
    p_upload.add_argument("file", help="Local file path")
    p_upload.add_argument("--key", default=None, help="Object key to store under")
    p_upload.set_defaults(func=cmd_upload)

    # modify
    p_modify = sub.add_parser("modify", help="Replace an existing object")
    p_modify.add_argument("key", help="Object key")
    p_modify.add_argument("file", help="Local file path")
    p_modify.set_defaults(func=cmd_modify)

    # delete
    p_delete = sub.add_parser("delete", help="Delete an object")
    p_delete.add_argument("key", help="Object key")
    p_delete.set_defaults(func=cmd_delete)

    # list
    p_list = sub.add_parser("list", help="List object keys")
    p_list.set_defaults(func=cmd_list)

    # link
    p_link = sub.add_parser("link", help="Print a short-lived download link")
    p_link.add_argument("key", help="Object key")
    p_link.set_defaults(func=cmd_link)

    # watch
    p_watch = sub.add_parser("watch", help="Print bucket events as they happen (Ctrl-C to stop)")
    p_watch.set_defaults(func=cmd_watch)

    args = parser.parse_args(argv)
    client = ObjectClient(base_url=args.base_url)
    try:
        return args.func(client, args)
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        client.close()


def cmd_upload(client: ObjectClient, args: argparse.Namespace) -> int:
    path = Path(args.file)
    if not path.exists():
        print(f"Missing file: {path}", file=sys.stderr)
        return 1
    print(client.upload(path, key=args.key), end="")
    return 0


def cmd_modify(client: ObjectClient, args: argparse.Namespace) -> int:
    path = Path(args.file)
    if not path.exists():
        print(f"Missing file: {path}", file=sys.stderr)
        return 1
    print(client.modify(args.key, path), end="")
    return 0


def cmd_delete(client: ObjectClient, args: argparse.Namespace) -> int:
    print(client.delete(args.key), end="")
    return 0


def cmd_list(client: ObjectClient, args: argparse.Namespace) -> int:
    print(json.dumps(client.list_objects(), indent=2))
    return 0


def cmd_link(client: ObjectClient, args: argparse.Namespace) -> int:
    print(client.download_link(args.key))
    return 0


def cmd_watch(client: ObjectClient, args: argparse.Namespace) -> int:
    print("Watching for bucket events...", file=sys.stderr)
    for event in client.watch():
        if event.is_error:
            print(f"Stream error: {event.data}", file=sys.stderr)
            return 1
        for record in event.records:
            obj = record.get("s3", {}).get("object", {})
            print(f"{record.get('eventTime', '')} {record.get('eventName', '')} {obj.get('key', '')}")
        sys.stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
