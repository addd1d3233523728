import argparse
import json
import logging
import sys
from datetime import datetime, timezone

from . import __version__
from .backends import BACKENDS
from .device import describe, device_info, git_rev

logger = logging.getLogger("bjpcg")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bjpcg",
        description="Block-Jacobi PCG on the GPU with Triton kernels",
    )
    parser.add_argument("--device", default=None, help="torch device, e.g. cuda:0 or cpu")
    parser.add_argument(
        "--backend",
        default="auto",
        choices=["auto"] + sorted(BACKENDS),
        help="compute backend, auto picks triton on CUDA and torch elsewhere",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("info", help="print device info and a JSON metrics blob")
    return parser


def run_info(device, backend: str = "auto") -> dict:
    info = device_info(device, backend)
    # Human readable line first, then the machine readable blob
    print(describe(info))
    metrics = {
        "run_id": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "command": "info",
        "gpu": info,
        "build": {"package_version": __version__, "git_rev": git_rev()},
    }
    print(json.dumps(metrics, indent=2))
    return metrics


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )
    if args.command == "info":
        try:
            run_info(args.device, args.backend)
        except (RuntimeError, ValueError) as exc:
            logger.error("failed to query device %s: %s", args.device, exc)
            return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
