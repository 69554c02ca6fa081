"""Local stand-in code-generation agent for supervisor and pipeline tests."""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Write deterministic files into the current directory and report them."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", required=True)
    parser.add_argument("--files", type=int, default=1)
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--sleep", type=float, default=0.0)
    args = parser.parse_args(argv)

    instruction = Path(args.prompt_file).read_text("utf-8")
    title = next((line for line in instruction.splitlines() if line.strip()), "task")
    print(f"Received instruction: {title.lstrip('# ').strip()}")

    if args.sleep > 0:
        time.sleep(args.sleep)

    for index in range(1, args.files + 1):
        target = Path.cwd() / f"generated_{index}.txt"
        target.write_text(f"{title}\nchange {index}\n", "utf-8")
        print(f"wrote {target.name}")
    print(f"{args.files} files changed")
    sys.stdout.flush()
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
