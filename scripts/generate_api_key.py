"""
Dev utility: generate an API key for the programmatic /api surface.

The service compares the Authorization header against API_KEY from the
environment (or .env). Paste the printed line into .env and restart.
"""

import argparse
import secrets


def generate_api_key(prefix: str) -> str:
    return f"{prefix}_" + secrets.token_urlsafe(32)


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--prefix", default="sk_dev")
    args = parser.parse_args()

    print(f"API_KEY={generate_api_key(args.prefix)}")


if __name__ == "__main__":
    main()
