"""imgjoin entrypoint (minimal dispatcher only).

Core implementation lives in:
  * imgjoin_core.py   - manifest reader, verification, reassembly, headless CLI
  * verify_parts.py   - standalone part checksum report (no joining)

Usage:
  python imgjoin.py /path/to/<stem>_parts/<stem>.manifest.txt [output.img]
"""
from __future__ import annotations

import sys
from imgjoin_core import headless_main


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    return headless_main(args)


if __name__ == '__main__':  # pragma: no cover
    raise SystemExit(main())
