"""Core helper + headless logic for the split image joiner.

Reassembles a file that was split into numbered parts, using the text
manifest written alongside the parts (``<stem>.manifest.txt``):

    FORMAT=img-split-v1
    ORIGINAL_FILE=disk.img
    ORIGINAL_SIZE=1048576
    ORIGINAL_SHA256=<hex64>
    PART_PREFIX=disk.img.part
    PARTS_BEGIN
    disk.img.part001 <hex64>
    ...
    PARTS_END

Pipeline: read manifest -> verify every part -> concatenate in natural order
-> verify the joined output. The dispatcher (`imgjoin.py`) and the standalone
verifier (`verify_parts.py`) are thin layers over the objects defined here.
"""
from __future__ import annotations
import os, sys, re, time, json, uuid, shutil, hashlib, functools, argparse
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Tuple

__version__ = "1.0.0"

# ---------------- Exit Codes & Schema ----------------
# Stable semantics for automation / CI integration.
SCHEMA_VERSION = 1
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 16

MANIFEST_FORMAT = "img-split-v1"
DEFAULT_OUTPUT = "reassembled.img"
DEFAULT_CHUNK_SIZE = 65536
PARTS_BEGIN = "PARTS_BEGIN"
PARTS_END = "PARTS_END"

_HEX64_RE = re.compile(r"^[0-9a-fA-F]{64}$")

__all__ = [
    "__version__",
    "Manifest",
    "PartEntry",
    "ChunkReport",
    "JoinConfig",
    "JoinResult",
    "JoinCallbacks",
    "EventLog",
    "JoinError",
    "ManifestError",
    "MissingChunksError",
    "ChunkDigestError",
    "ReassemblyError",
    "FinalDigestError",
    "ConfigError",
    "parse_manifest",
    "load_manifest",
    "sha256_file",
    "check_part",
    "display_name",
    "verify_chunks",
    "natural_compare",
    "natural_sorted",
    "reassemble",
    "verify_output",
    "join_image",
    "headless_main",
    "parse_verification_summary",
]


# ---------------- Errors ----------------
def display_name(name: str) -> str:
    """Printable form of a part name read with surrogateescape (undecodable bytes -> U+FFFD)."""
    return name.encode('utf-8', 'surrogateescape').decode('utf-8', 'replace')


class JoinError(Exception):
    """Base class for every fatal condition of a join run."""
    exit_code = EXIT_FAILURE

    def lines(self) -> List[str]:
        return [f"Error: {self}"]


class ManifestError(JoinError):
    pass


class ConfigError(JoinError):
    exit_code = EXIT_CONFIG_ERROR


class MissingChunksError(JoinError):
    def __init__(self, missing: List[str], total: int):
        self.missing = list(missing)
        self.total = total
        super().__init__(f"missing {len(self.missing)} of {total} parts. Aborting.")

    def lines(self) -> List[str]:
        return [f"Error: {self}"] + [f"  missing: {display_name(m)}" for m in self.missing]


class ChunkDigestError(JoinError):
    def __init__(self, name: str, expected: str, actual: str):
        self.name, self.expected, self.actual = name, expected, actual
        super().__init__(f"checksum mismatch: {display_name(name)}")

    def lines(self) -> List[str]:
        return [f"Error: {self}", f" expected: {self.expected}", f"   actual: {self.actual}"]


class ReassemblyError(JoinError):
    pass


class FinalDigestError(JoinError):
    def __init__(self, expected: str, actual: str, output_path: str):
        self.expected, self.actual, self.output_path = expected, actual, output_path
        super().__init__("final SHA-256 mismatch")

    def lines(self) -> List[str]:
        return [f"Error: {self}", f" expected: {self.expected}", f"   actual: {self.actual}",
                f"   output kept for inspection: {self.output_path}"]


# ---------------- Data model ----------------
@dataclass(frozen=True)
class PartEntry:
    name: str
    sha256: str


@dataclass(frozen=True)
class Manifest:
    path: str
    format: str
    original_file: str
    original_size: Optional[int]
    original_sha256: str
    part_prefix: str
    parts: Tuple[PartEntry, ...]

    @property
    def directory(self) -> str:
        return os.path.dirname(self.path)

    def part_path(self, name: str) -> str:
        return os.path.join(self.directory, name)


@dataclass
class ChunkReport:
    verified: List[str]
    missing: List[str]
    total: int


# ---------------- Manifest reader ----------------
def _scalar_fields(lines: List[str], keys: Tuple[str, ...]) -> Dict[str, str]:
    found: Dict[str, str] = {}
    for line in lines:
        for key in keys:
            if key not in found and line.startswith(key + '='):
                found[key] = line[len(key) + 1:].strip()
    return found


def _part_lines(lines: List[str]) -> List[Tuple[int, str]]:
    """Return (line_no, text) pairs strictly between PARTS_BEGIN and PARTS_END markers."""
    out: List[Tuple[int, str]] = []
    in_block = False
    begin_line = 0
    for n, line in enumerate(lines, 1):
        if line.startswith(PARTS_BEGIN):
            in_block = True; begin_line = n
            continue
        if line.startswith(PARTS_END):
            in_block = False
            continue
        if in_block:
            out.append((n, line))
    if in_block:
        raise ManifestError(f"unterminated {PARTS_BEGIN} block (line {begin_line}): missing {PARTS_END}")
    return out


def parse_manifest(text: str, path: str) -> Manifest:
    """Parse manifest text. ``path`` is the manifest location chunk names are resolved against."""
    lines = text.splitlines()
    fields = _scalar_fields(lines, ('FORMAT', 'ORIGINAL_FILE', 'ORIGINAL_SIZE', 'ORIGINAL_SHA256', 'PART_PREFIX'))
    fmt = fields.get('FORMAT', '')
    if fmt != MANIFEST_FORMAT:
        raise ManifestError(f"unsupported manifest format: {display_name(fmt) or '<missing>'}")

    raw_size = fields.get('ORIGINAL_SIZE', '')
    original_size: Optional[int] = None
    if raw_size:
        if not re.fullmatch(r'[0-9]+', raw_size):
            raise ManifestError(f"ORIGINAL_SIZE must be a non-negative integer, got: {display_name(raw_size)}")
        original_size = int(raw_size)

    original_sha = fields.get('ORIGINAL_SHA256', '')
    if not original_sha:
        raise ManifestError("ORIGINAL_SHA256 missing from manifest")
    if not _HEX64_RE.match(original_sha):
        raise ManifestError(f"ORIGINAL_SHA256 is not a 64-character hex digest: {display_name(original_sha)}")

    parts: List[PartEntry] = []
    for n, line in _part_lines(lines):
        tokens = line.split()
        if not tokens:
            continue
        if len(tokens) != 2:
            raise ManifestError(f"line {n}: expected '<part> <sha256>', got {line.strip()!r}")
        name, digest = tokens
        if not _HEX64_RE.match(digest):
            raise ManifestError(f"line {n}: invalid SHA-256 for {display_name(name)}: {display_name(digest)}")
        if os.path.isabs(name) or os.pardir in re.split(r'[\\/]', name):
            raise ManifestError(f"line {n}: part name must stay inside the manifest folder: {display_name(name)}")
        parts.append(PartEntry(name, digest.lower()))
    if not parts:
        raise ManifestError("no parts listed in manifest")

    return Manifest(
        path=os.path.abspath(path), format=fmt,
        original_file=fields.get('ORIGINAL_FILE', ''),
        original_size=original_size,
        original_sha256=original_sha.lower(),
        part_prefix=fields.get('PART_PREFIX', ''),
        parts=tuple(parts),
    )


def load_manifest(path: str) -> Manifest:
    manifest_path = os.path.abspath(path)
    if not os.path.isfile(manifest_path):
        raise ManifestError(f"manifest not found: {manifest_path}")
    with open(manifest_path, 'r', encoding='utf-8', errors='surrogateescape') as f:
        text = f.read()
    return parse_manifest(text, manifest_path)


# ---------------- Digest engine ----------------
def sha256_file(path: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    h = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(chunk_size), b''):
            h.update(chunk)
    return h.hexdigest()


# ---------------- Callbacks / events ----------------
class JoinCallbacks:
    """Interface for CLI / programmatic progress integration (all optional)."""
    def log(self, message: str): ...  # pragma: no cover - interface stub
    def error(self, message: str): ...
    def phase(self, phase: str, pct: int): ...


class CLICallbacks(JoinCallbacks):
    def log(self, message: str): print(message)
    def error(self, message: str): print(message, file=sys.stderr)
    def phase(self, phase: str, pct: int): pass


class RichCallbacks(JoinCallbacks):  # pragma: no cover - UI layer exercised indirectly
    def __init__(self):
        from rich.console import Console
        from rich.progress import Progress, BarColumn, TextColumn, TimeElapsedColumn
        self._err = Console(stderr=True)
        self._progress = Progress(
            TextColumn("[bold cyan]{task.fields[phase]:>7}[/]"),
            BarColumn(),
            TextColumn("{task.percentage:>5.1f}%"),
            TimeElapsedColumn(),
            transient=False,
        )
        self._tasks: Dict[str, Any] = {}
    def start(self): self._progress.start()
    def stop(self): self._progress.stop()
    def log(self, message: str):
        self._progress.console.print(message, markup=False, highlight=False)
    def error(self, message: str):
        self._err.print(message, markup=False, highlight=False)
    def phase(self, phase: str, pct: int):
        if phase not in self._tasks:
            self._tasks[phase] = self._progress.add_task(description="", total=100, phase=phase)
        self._progress.update(self._tasks[phase], completed=max(0, min(100, pct)))


def _invoke(cb, name: str, *a):
    if cb is None: return
    fn = getattr(cb, name, None)
    if callable(fn):
        try: fn(*a)
        except Exception: pass


class EventLog:
    """JSON event envelope emitter (stdout via callbacks and/or an NDJSON file)."""

    def __init__(self, json_logs: bool = False, events_file: Optional[str] = None, callbacks: Optional[JoinCallbacks] = None):
        self.json_logs = json_logs
        self.events_file = events_file
        self.callbacks = callbacks
        self.run_id = uuid.uuid4().hex
        self._seq = 0

    @property
    def enabled(self) -> bool:
        return bool(self.json_logs or self.events_file)

    def emit(self, event: str, **data):
        if not self.enabled:
            return
        self._seq += 1
        payload = {
            'event': event,
            'ts': datetime.now(timezone.utc).isoformat(),
            'seq': self._seq,
            'run_id': self.run_id,
            'schema_version': SCHEMA_VERSION,
            'tool_version': __version__,
            **data
        }
        line = json.dumps(payload)
        if self.json_logs:
            _invoke(self.callbacks, 'log', line)
        if self.events_file:
            try:
                with open(self.events_file, 'a', encoding='utf-8') as ef:
                    ef.write(line + '\n')
            except OSError as e:
                _invoke(self.callbacks, 'error', f"[events] cannot write {self.events_file}: {e}")


# ---------------- Chunk verifier ----------------
def check_part(manifest: Manifest, part: PartEntry, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Optional[str]:
    """Digest of the part on disk, or None when it is not a regular file."""
    path = manifest.part_path(part.name)
    if not os.path.isfile(path):
        return None
    return sha256_file(path, chunk_size)


def verify_chunks(manifest: Manifest, callbacks: Optional[JoinCallbacks] = None,
                  chunk_size: int = DEFAULT_CHUNK_SIZE, events: Optional[EventLog] = None) -> ChunkReport:
    """Check existence and digest of every listed part.

    Missing parts are collected and reported together once the whole list has
    been walked; a digest mismatch aborts on the spot.
    """
    verified: List[str] = []
    missing: List[str] = []
    total = len(manifest.parts)
    for idx, part in enumerate(manifest.parts, 1):
        actual = check_part(manifest, part, chunk_size)
        if actual is None:
            _invoke(callbacks, 'log', f"Missing: {display_name(part.name)}")
            if events: events.emit('part_missing', part=part.name)
            missing.append(part.name)
            continue
        if actual != part.sha256:
            if events: events.emit('part_mismatch', part=part.name, expected=part.sha256, actual=actual)
            raise ChunkDigestError(part.name, part.sha256, actual)
        verified.append(part.name)
        _invoke(callbacks, 'phase', 'verify', int(idx * 100 / total))
    if missing:
        raise MissingChunksError(missing, total)
    return ChunkReport(verified=verified, missing=missing, total=total)


# ---------------- Natural (version) ordering ----------------
def _is_digit(c: str) -> bool:
    return '0' <= c <= '9'


def _char_order(c: str) -> int:
    # '~' < end-of-run < letters < everything else, mirroring version sort.
    if _is_digit(c): return 0
    if c.isascii() and c.isalpha(): return ord(c)
    if c == '~': return -1
    return ord(c) + 256


def _version_cmp(a: str, b: str) -> int:
    i = j = 0
    la, lb = len(a), len(b)
    while i < la or j < lb:
        while (i < la and not _is_digit(a[i])) or (j < lb and not _is_digit(b[j])):
            ac = _char_order(a[i]) if i < la else 0
            bc = _char_order(b[j]) if j < lb else 0
            if ac != bc:
                return ac - bc
            i += 1; j += 1
        while i < la and a[i] == '0': i += 1
        while j < lb and b[j] == '0': j += 1
        first_diff = 0
        while i < la and _is_digit(a[i]) and j < lb and _is_digit(b[j]):
            if not first_diff:
                first_diff = ord(a[i]) - ord(b[j])
            i += 1; j += 1
        if i < la and _is_digit(a[i]): return 1
        if j < lb and _is_digit(b[j]): return -1
        if first_diff: return first_diff
    return 0


def natural_compare(a: str, b: str) -> int:
    """Compare names with embedded digit runs taken numerically (``part9`` < ``part10``).

    Returns -1, 0 or 1. Names equal under version ordering (``part01`` vs
    ``part1``) fall back to plain string comparison so the order is total.
    """
    r = _version_cmp(a, b)
    if r == 0:
        r = (a > b) - (a < b)
    return (r > 0) - (r < 0)


def natural_sorted(names) -> List[str]:
    return sorted(names, key=functools.cmp_to_key(natural_compare))


# ---------------- Reassembler ----------------
def reassemble(manifest: Manifest, output_path: str, callbacks: Optional[JoinCallbacks] = None,
               chunk_size: int = DEFAULT_CHUNK_SIZE) -> List[str]:
    """Concatenate parts into ``output_path`` (created or truncated); returns the order used."""
    order = natural_sorted(p.name for p in manifest.parts)
    out_real = os.path.realpath(output_path)
    protected = {os.path.realpath(manifest.path)} | {os.path.realpath(manifest.part_path(n)) for n in order}
    if out_real in protected:
        raise ReassemblyError(f"output path would overwrite an input file: {out_real}")
    total = len(order)
    try:
        with open(output_path, 'wb') as out:
            for idx, name in enumerate(order, 1):
                with open(manifest.part_path(name), 'rb') as src:
                    shutil.copyfileobj(src, out, chunk_size)
                _invoke(callbacks, 'phase', 'concat', int(idx * 100 / total))
    except OSError as e:
        raise ReassemblyError(f"cannot write {output_path}: {e}") from e
    return order


# ---------------- Final verifier ----------------
def verify_output(manifest: Manifest, output_path: str,
                  chunk_size: int = DEFAULT_CHUNK_SIZE) -> Tuple[str, int, Optional[bool]]:
    """Return (sha256, size, size_matched). size_matched is None when the manifest records no size."""
    actual = sha256_file(output_path, chunk_size)
    size = os.path.getsize(output_path)
    if actual != manifest.original_sha256:
        raise FinalDigestError(manifest.original_sha256, actual, os.path.abspath(output_path))
    size_matched = None if manifest.original_size is None else (size == manifest.original_size)
    return actual, size, size_matched


# ---------------- Orchestration ----------------
@dataclass
class JoinConfig:
    manifest: str
    output: str = DEFAULT_OUTPUT
    verify_only: bool = False
    chunk_size: int = DEFAULT_CHUNK_SIZE
    json_logs: bool = False
    events_file: Optional[str] = None
    progress_mode: str = 'plain'  # 'plain' or 'rich'
    report: Optional[str] = None  # 'json' or 'md'
    config_file: Optional[str] = None


@dataclass
class JoinResult:
    manifest_path: str
    output_path: Optional[str]
    sha256: Optional[str] = None
    size: Optional[int] = None
    size_matched: Optional[bool] = None
    parts_order: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    timings: Dict[str, float] = field(default_factory=dict)
    run_id: Optional[str] = None


def join_image(cfg: JoinConfig, callbacks: Optional[JoinCallbacks] = None,
               events: Optional[EventLog] = None) -> JoinResult:
    """Run the full pipeline. Raises a JoinError subclass on any fatal condition."""
    def log(msg: str): _invoke(callbacks, 'log', msg)
    if events is None:
        events = EventLog(cfg.json_logs, cfg.events_file, callbacks)
    timings: Dict[str, float] = {}

    t = time.time()
    manifest = load_manifest(cfg.manifest)
    timings['manifest'] = round(time.time() - t, 3)
    events.emit('start', manifest=manifest.path, original_file=manifest.original_file,
                parts=len(manifest.parts), verify_only=cfg.verify_only)

    log("[*] Verifying parts...")
    t = time.time()
    report = verify_chunks(manifest, callbacks, cfg.chunk_size, events)
    timings['verify'] = round(time.time() - t, 3)
    events.emit('parts_verified', total=report.total)
    if cfg.verify_only:
        log(f"[ok] All {report.total} parts verified.")
        return JoinResult(manifest.path, None, timings=timings, run_id=events.run_id)

    log(f"[*] Concatenating parts into {cfg.output} ...")
    t = time.time()
    order = reassemble(manifest, cfg.output, callbacks, cfg.chunk_size)
    timings['concat'] = round(time.time() - t, 3)
    events.emit('concatenated', output=os.path.abspath(cfg.output), order=order)

    log("[*] Verifying final image checksum and size...")
    t = time.time()
    digest, size, size_matched = verify_output(manifest, cfg.output, cfg.chunk_size)
    timings['final'] = round(time.time() - t, 3)
    _invoke(callbacks, 'phase', 'final', 100)

    warnings: List[str] = []
    if size_matched is False:
        log("Warning: size mismatch")
        log(f" manifest: {manifest.original_size}")
        log(f"   actual: {size}")
        warnings.append(f"size mismatch: manifest {manifest.original_size}, actual {size}")
        events.emit('size_warning', expected=manifest.original_size, actual=size)
    else:
        log("[ok] Reassembled image verified.")
    output_path = os.path.abspath(cfg.output)
    log(f"Output image: {output_path}")
    events.emit('verified', output=output_path, sha256=digest, size=size)
    return JoinResult(manifest.path, output_path, digest, size, size_matched, order, warnings, timings, events.run_id)


# ---------------- Standalone verifier summary ----------------
_VERIFICATION_RE = re.compile(r"OK=(\d+) Missing=(\d+) Mismatched=(\d+) Total=(\d+)")

def parse_verification_summary(text: str):
    """Parse the ``OK=.. Missing=.. Mismatched=.. Total=..`` line printed by verify_parts.py."""
    for line in (text or '').splitlines():
        m = _VERIFICATION_RE.search(line)
        if m:
            ok, missing, mismatched, total = map(int, m.groups())
            return {'ok':ok,'missing':missing,'mismatched':mismatched,'total':total}
    return {'ok':None,'missing':None,'mismatched':None,'total':None}


# ---------------- CLI helpers ----------------
def _load_config_file(path: str) -> dict:
    import yaml
    if not os.path.isfile(path):
        raise ConfigError(f"config file not found: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.lower().endswith(('.yml', '.yaml')):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot load config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config {path} must contain a mapping, got {type(data).__name__}")
    return data


def _write_report(path: str, fmt: str, summary: Dict[str, Any]):
    if fmt == 'json':
        with open(path, 'w', encoding='utf-8') as rf:
            json.dump(summary, rf, indent=2)
        return
    def _section(title: str):
        return f"\n## {title}\n"
    lines = ["# Join Report\n", "\nGenerated: " + datetime.now(timezone.utc).isoformat() + "\n"]
    lines.append(_section('Overview'))
    lines.append(f"Manifest: {summary.get('manifest')}\nSuccess: {summary.get('success')}\n"
                 f"Exit Code: {summary.get('exit_code')}\nOutput: {summary.get('output')}\n")
    if summary.get('sha256'):
        lines.append(f"SHA-256: {summary['sha256']}\nSize: {summary.get('size')}\n")
    if summary.get('error'):
        lines.append(_section('Error'))
        for line in summary['error']:
            lines.append(f"    {line}\n")
    if summary.get('timings'):
        lines.append(_section('Timings'))
        for k, v in summary['timings'].items():
            lines.append(f"- {k}: {v}s\n")
    if summary.get('warnings'):
        lines.append(_section('Warnings'))
        for w in summary['warnings']:
            lines.append(f"- {w}\n")
    with open(path, 'w', encoding='utf-8') as rf:
        rf.write(''.join(lines))


def _positive_int(text: str) -> int:
    try:
        v = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {text}")
    if v <= 0:
        raise argparse.ArgumentTypeError(f"must be > 0: {text}")
    return v


def headless_main(argv: list[str]) -> int:
    """Command line entry: ``imgjoin <manifest> [output]`` plus logging/report options."""
    parser = argparse.ArgumentParser(prog='imgjoin', description="Reassemble a split image from its parts using the manifest, with checksum verification")
    parser.add_argument('manifest', nargs='?', default=None, help='Path to <stem>.manifest.txt')
    parser.add_argument('output', nargs='?', default=None, help=f'Output file (default: {DEFAULT_OUTPUT})')
    parser.add_argument('--verify-only', action='store_true', help='Verify parts against the manifest without joining')
    parser.add_argument('--chunk-size', type=_positive_int, default=DEFAULT_CHUNK_SIZE, help='Read block size in bytes for hashing/copying')
    parser.add_argument('--json-logs', action='store_true', help='Emit machine-readable JSON log lines')
    parser.add_argument('--events-file', default=None, help='Append JSON events to this NDJSON file')
    parser.add_argument('--progress', choices=['plain','rich'], default='plain', help='Progress rendering mode')
    parser.add_argument('--report', choices=['json','md'], default=None, help='Write join_report.json or join_report.md next to the output')
    parser.add_argument('--config', default=None, help='Optional config file (JSON/YAML) supplying defaults')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    args = parser.parse_args(argv)

    if args.config:
        try:
            cfg_file = _load_config_file(args.config)
        except ConfigError as e:
            for line in e.lines(): print(line, file=sys.stderr)
            return e.exit_code
        defaults = {a.dest: a.default for a in parser._actions if hasattr(a, 'dest')}
        for k, v in cfg_file.items():
            k = str(k).replace('-', '_')
            if k in ('config', 'help', 'version') or not hasattr(args, k):
                continue
            if getattr(args, k) == defaults.get(k):
                setattr(args, k, v)
        if isinstance(args.chunk_size, bool) or not isinstance(args.chunk_size, int) or args.chunk_size <= 0:
            print(f"Error: chunk_size in {args.config} must be a positive integer", file=sys.stderr)
            return EXIT_CONFIG_ERROR
        for a in parser._actions:
            value = getattr(args, a.dest, None)
            if a.choices and value is not None and value not in a.choices:
                print(f"Error: {a.dest} in {args.config} must be one of {', '.join(a.choices)}, got {value!r}", file=sys.stderr)
                return EXIT_CONFIG_ERROR

    if not args.manifest:
        print(f"Usage: {parser.prog} /path/to/<stem>_parts/<stem>.manifest.txt [output.img]", file=sys.stderr)
        return EXIT_FAILURE

    cfg = JoinConfig(
        manifest=args.manifest, output=args.output or DEFAULT_OUTPUT, verify_only=args.verify_only,
        chunk_size=args.chunk_size, json_logs=args.json_logs, events_file=args.events_file,
        progress_mode=args.progress, report=args.report, config_file=args.config,
    )

    callbacks: JoinCallbacks
    rich_context = None
    if cfg.progress_mode == 'rich':
        rich_context = RichCallbacks()
        rich_context.start()
        callbacks = rich_context
    else:
        callbacks = CLICallbacks()
    events = EventLog(cfg.json_logs, cfg.events_file, callbacks)

    res: Optional[JoinResult] = None
    error_lines: Optional[List[str]] = None
    exit_code = EXIT_SUCCESS
    try:
        res = join_image(cfg, callbacks, events)
    except JoinError as e:
        error_lines = e.lines()
        exit_code = e.exit_code
        events.emit('error', kind=type(e).__name__, message=str(e))
    except OSError as e:
        error_lines = [f"Error: I/O failure: {e}"]
        exit_code = EXIT_FAILURE
        events.emit('error', kind='OSError', message=str(e))
    finally:
        if rich_context is not None:
            rich_context.stop()
    if error_lines:
        for line in error_lines:
            callbacks.error(line)

    if cfg.report:
        report_dir = os.path.dirname(os.path.abspath(cfg.output))
        report_path = os.path.join(report_dir, f"join_report.{cfg.report}")
        summary = {
            'manifest': os.path.abspath(cfg.manifest),
            'output': res.output_path if res else os.path.abspath(cfg.output),
            'verify_only': cfg.verify_only,
            'success': exit_code == EXIT_SUCCESS,
            'exit_code': exit_code,
            'sha256': res.sha256 if res else None,
            'size': res.size if res else None,
            'size_matched': res.size_matched if res else None,
            'parts_order': res.parts_order if res else [],
            'warnings': res.warnings if res else [],
            'timings': res.timings if res else {},
            'error': error_lines,
        }
        try:
            _write_report(report_path, cfg.report, summary)
            if cfg.json_logs:
                print(json.dumps({'event':'report_generated','path':report_path,'format':cfg.report}))
            else:
                print(f"[report] generated {report_path}")
        except OSError as e:
            print(f"[report] failed: {e}", file=sys.stderr)

    events.emit('summary_final', exit_code=exit_code, success=(exit_code == EXIT_SUCCESS),
                output=res.output_path if res else None)
    return exit_code
