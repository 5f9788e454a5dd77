"""Entry point for `python -m sandgate` / `sandgate`.

Subcommands:
    sandgate review <skills_dir>   Review skill files; exit 1 if any is unsafe
    sandgate egress-args           Print container launch args as a JSON array
    sandgate egress-init           Write the default network allowlist if missing
    sandgate egress-check          Exit 0 if the image supports egress filtering
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path


def _review(skills_dir: Path) -> int:
    from sandgate.security.skill_review import review_skill_directory

    return 0 if asyncio.run(review_skill_directory(skills_dir)) else 1


def _egress_args() -> int:
    from sandgate.security.network_policy import get_network_args

    print(json.dumps(asyncio.run(get_network_args())))
    return 0


def _egress_init() -> int:
    from sandgate.config import get_settings
    from sandgate.security.network_policy import EgressPolicyResolver

    s = get_settings()
    created = EgressPolicyResolver.from_settings(s).ensure_default_allowlist()
    state = "Created" if created else "Already exists:"
    print(f"{state} {s.allowlist_path}")
    return 0


def _egress_check() -> int:
    from sandgate.config import get_settings
    from sandgate.security.network_policy import check_egress_support

    s = get_settings()
    supported = check_egress_support(
        s.egress.container_cli,
        s.egress.container_image,
        timeout=s.egress.support_check_timeout_seconds,
    )
    if supported:
        print(f"{s.egress.container_image} supports egress filtering")
        return 0
    print(f"{s.egress.container_image} does not support egress filtering", file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="sandgate",
        description="Content trust and egress policy gates for agent containers",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    review = sub.add_parser("review", help="LLM-review skill files before syncing")
    review.add_argument("skills_dir", type=Path, help="Directory of <skill>/*.md files")
    sub.add_parser("egress-args", help="Print container args for the egress allowlist")
    sub.add_parser("egress-init", help="Create the default network allowlist")
    sub.add_parser("egress-check", help="Check the container image for iptables support")

    args = parser.parse_args(argv)

    from sandgate.config import get_settings
    from sandgate.logger import set_level

    s = get_settings()
    if "logging" in s.model_fields_set:
        set_level(s.logging.level)

    match args.command:
        case "review":
            code = _review(args.skills_dir)
        case "egress-args":
            code = _egress_args()
        case "egress-init":
            code = _egress_init()
        case "egress-check":
            code = _egress_check()
        case _:
            parser.error(f"unknown command: {args.command}")
    sys.exit(code)


if __name__ == "__main__":
    main()
