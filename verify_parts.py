#!/usr/bin/env python3
"""Verify part checksums recorded in an img-split-v1 manifest without joining.

Usage:
  python verify_parts.py --manifest /path/to/<stem>.manifest.txt [--fast-missing]

Unlike the joiner, every part is checked even after a mismatch so one run
lists everything that needs re-fetching. Exit 0 if all parts are present and
match, 2 if the manifest cannot be used, 3 otherwise.
"""
from __future__ import annotations
import argparse, sys

from imgjoin_core import load_manifest, check_part, display_name, ManifestError, Manifest

LIST_CAP = 25


def audit_parts(manifest: Manifest, progress=print) -> dict:
    """Sort every part into ok / missing / mismatched; unreadable parts count as missing."""
    result = {'ok': [], 'missing': [], 'mismatched': []}
    total = len(manifest.parts)
    for idx, part in enumerate(manifest.parts, 1):
        try:
            actual = check_part(manifest, part)
        except OSError:
            actual = None
        if actual is None:
            result['missing'].append(part.name)
        else:
            result['ok' if actual == part.sha256 else 'mismatched'].append(part.name)
        if idx == 1 or idx == total or idx % 200 == 0:
            progress(f"[verify] {idx}/{total} ({int(idx * 100 / total)}%)")
    return result


def _print_names(title: str, names: list):
    if not names:
        return
    print(f"\n{title}:")
    for n in names[:LIST_CAP]:
        print('  ', display_name(n))
    if len(names) > LIST_CAP:
        print(f"  ... (+{len(names) - LIST_CAP} more)")


def main(argv: list[str]) -> int:
    p = argparse.ArgumentParser(description='Verify recorded SHA256 checksums of split image parts')
    p.add_argument('--manifest', required=True, help='Path to <stem>.manifest.txt')
    p.add_argument('--quiet', action='store_true', help='Only print the summary and problem lists')
    args = p.parse_args(argv)

    try:
        manifest = load_manifest(args.manifest)
    except ManifestError as e:
        print(f"[error] {e}", file=sys.stderr)
        return 2
    res = audit_parts(manifest, progress=(lambda _m: None) if args.quiet else print)
    ok, missing, mismatched = res['ok'], res['missing'], res['mismatched']
    print(f"[verify] OK={len(ok)} Missing={len(missing)} Mismatched={len(mismatched)} Total={len(manifest.parts)}")
    _print_names('Missing parts', missing)
    _print_names('Mismatched parts', mismatched)
    return 0 if not (missing or mismatched) else 3


def cli() -> int:
    return main(sys.argv[1:])


if __name__ == '__main__':
    raise SystemExit(cli())
