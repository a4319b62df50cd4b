"""decoys.py — Innocuous screens shown while the reader is hidden."""

import random
from datetime import datetime, timedelta
from enum import Enum


class DecoyScreen(Enum):
    CODE = "code"
    LOG = "log"
    SHELL = "shell"
    DASHBOARD = "dashboard"


_CODE_LINES = [
    "import logging",
    "from dataclasses import dataclass, field",
    "",
    "logger = logging.getLogger(__name__)",
    "",
    "",
    "@dataclass",
    "class RetryPolicy:",
    "    attempts: int = 3",
    "    backoff: float = 0.5",
    "    retry_on: tuple = (ConnectionError, TimeoutError)",
    "",
    "",
    "def fetch_batch(client, cursor, policy=RetryPolicy()):",
    '    """Pull one page of records, retrying transient failures."""',
    "    delay = policy.backoff",
    "    for attempt in range(policy.attempts):",
    "        try:",
    "            return client.get_records(cursor=cursor, limit=500)",
    "        except policy.retry_on as e:",
    '            logger.warning("batch %s failed (attempt %d): %s", cursor, attempt + 1, e)',
    "            time.sleep(delay)",
    "            delay *= 2",
    '    raise RuntimeError(f"giving up on cursor {cursor}")',
    "",
    "",
    "def merge_records(existing, incoming):",
    "    by_id = {r.id: r for r in existing}",
    "    for record in incoming:",
    "        current = by_id.get(record.id)",
    "        if current is None or record.updated_at > current.updated_at:",
    "            by_id[record.id] = record",
    "    return sorted(by_id.values(), key=lambda r: r.updated_at)",
]

_LOG_SERVICES = ["api-gateway", "auth", "billing", "scheduler", "ingest", "cache"]
_LOG_LEVELS = ["INFO", "INFO", "INFO", "DEBUG", "WARN"]
_LOG_MESSAGES = [
    "request completed status=200 duration_ms={n}",
    "cache hit ratio={r:.2f} keys={n}",
    "flushed {n} records to storage",
    "health check ok upstream=db-{m}",
    "retrying connection to queue attempt={m}",
    "worker pool resized size={m}",
    "processed batch id={n} items={m}",
    "token refreshed ttl={n}s",
]

_SHELL_SESSION = [
    ("git status", [
        "On branch main",
        "Your branch is up to date with 'origin/main'.",
        "",
        "nothing to commit, working tree clean",
    ]),
    ("git log --oneline -5", [
        "{h1} Fix pagination offset in export job",
        "{h2} Bump dependencies",
        "{h3} Add retry around storage uploads",
        "{h4} Tidy logging configuration",
        "{h5} Merge branch 'feature/report-filters'",
    ]),
    ("make test", [
        "pytest -q",
        "........................................................ [ 71%]",
        "......................                                   [100%]",
        "{n} passed in {t:.2f}s",
    ]),
    ("df -h /", [
        "Filesystem      Size  Used Avail Use% Mounted on",
        "/dev/nvme0n1p2  468G  {u}G  {a}G  {p}% /",
    ]),
]


def choose_decoy(rng: random.Random) -> DecoyScreen:
    return rng.choice(list(DecoyScreen))


def _code(rng: random.Random, width: int, height: int) -> list[str]:
    start = rng.randrange(0, 8)
    lines = [f"  vim  src/pipeline/sync.py{' ' * 8}[{start + 1},1]", ""]
    body = _CODE_LINES[start:] + _CODE_LINES[:start]
    for number, line in enumerate(body, start=start + 1):
        lines.append(f"{number:4d}  {line}"[:width])
    return lines[:height]


def _log(rng: random.Random, width: int, height: int, now: datetime) -> list[str]:
    now = now.astimezone().replace(microsecond=0, tzinfo=None)
    count = max(height - 1, 1)
    lines = []
    for i in range(count):
        stamp = now - timedelta(seconds=(count - i) * rng.randint(1, 4))
        message = rng.choice(_LOG_MESSAGES).format(
            n=rng.randint(10, 9999), m=rng.randint(1, 16), r=rng.random()
        )
        line = (
            f"{stamp.isoformat()} {rng.choice(_LOG_LEVELS):<5} "
            f"[{rng.choice(_LOG_SERVICES)}] {message}"
        )
        lines.append(line[:width])
    return lines


def _shell(rng: random.Random, width: int, height: int) -> list[str]:
    values = {
        "n": rng.randint(60, 140),
        "t": rng.uniform(2, 20),
        "u": rng.randint(100, 300),
        "a": rng.randint(100, 300),
        "p": rng.randint(20, 70),
    }
    for i in range(1, 6):
        values[f"h{i}"] = f"{rng.getrandbits(28):07x}"
    lines = []
    for command, output in _SHELL_SESSION:
        lines.append(f"dev@workstation:~/projects/pipeline$ {command}")
        lines.extend(line.format(**values) for line in output)
        lines.append("")
    lines.append("dev@workstation:~/projects/pipeline$ ")
    return [line[:width] for line in lines[-height:]]


def _dashboard(rng: random.Random, width: int, height: int) -> list[str]:
    bar_width = max(min(width - 30, 40), 10)
    lines = [
        "SYSTEM STATUS".center(min(width, 60)),
        "=" * min(width, 60),
        "",
    ]
    for name in ("cpu", "memory", "disk io", "network", "queue depth"):
        load = rng.random()
        filled = int(load * bar_width)
        lines.append(f"{name:<12} [{'#' * filled}{'.' * (bar_width - filled)}] {load * 100:5.1f}%")
    lines.append("")
    lines.append(f"{'service':<16}{'state':<10}{'uptime':>10}")
    for service in _LOG_SERVICES:
        state = "degraded" if rng.random() < 0.1 else "running"
        lines.append(f"{service:<16}{state:<10}{rng.randint(1, 96):>8}h")
    return [line[:width] for line in lines[:height]]


_RENDERERS = {
    DecoyScreen.CODE: _code,
    DecoyScreen.SHELL: _shell,
    DecoyScreen.DASHBOARD: _dashboard,
}


def render_decoy(
    kind: DecoyScreen,
    rng: random.Random,
    width: int = 80,
    height: int = 24,
    now: datetime | None = None,
) -> str:
    """Build the full text of one decoy screen. Same rng state and `now`, same text."""
    if kind is DecoyScreen.LOG:
        lines = _log(rng, width, height, now or datetime.now())
    else:
        lines = _RENDERERS[kind](rng, width, height)
    return "\n".join(lines)
