import argparse
import logging

from backend.app.logging_config import setup_logging
from sdk.python.tryon_client import TryOnClient, TryOnClientError


def main():
    parser = argparse.ArgumentParser(description="Send a person/garment pair to a running try-on relay")
    parser.add_argument("--person", required=True, help="Path to person image")
    parser.add_argument("--garment", required=True, help="Path to garment image")
    parser.add_argument("--out", default=None, help="Optional path to save the result image")
    parser.add_argument("--base-url", default="http://127.0.0.1:8000", help="Relay base URL")
    parser.add_argument("--retries", type=int, default=1, help="Whole-request attempts on server errors")
    args = parser.parse_args()

    setup_logging()
    log = logging.getLogger("run_local_demo")
    client = TryOnClient(args.base_url, retries=args.retries)
    try:
        url = client.try_on(args.person, args.garment)
    except TryOnClientError as e:
        log.error("Try-on failed: %s", e)
        raise SystemExit(1)
    print(f"Result: {url}")
    if args.out:
        client.download_result_to(url, args.out)
        print(f"Saved: {args.out}")


if __name__ == "__main__":
    main()
