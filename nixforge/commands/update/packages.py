"""Package version changes between system generations.

Reads `nix profile diff-closures` for the system profile and keeps the
last generation transition, i.e. the one the rebuild just produced.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from ...config.constants import SYSTEM_PROFILE
from ...models.summary import PackageChange
from ..executor import CancellationToken, run_capture
from ..output_filter import strip_escape_codes

logger = logging.getLogger(__name__)

VERSION_HEADER_RE = re.compile(r"^Version \d+ -> \d+:")
LINE_RE = re.compile(r"^\s+(?P<name>[^:\s][^:]*):\s*(?P<rest>.+)$")
SIZE_RE = re.compile(r"(?:,\s*)?(?P<sign>[+-])(?P<amount>\d+(?:\.\d+)?)\s*(?P<unit>[KMG]iB)\s*$")
ARROW = "→"

_UNIT_KIB = {"KiB": 1.0, "MiB": 1024.0, "GiB": 1024.0 * 1024.0}


@dataclass
class PackageCompareResult:
    changes: List[PackageChange] = field(default_factory=list)
    closure_summary: Optional[str] = None


def last_transition(output: str) -> List[str]:
    """Lines of the final "Version N -> M:" block."""
    block: List[str] = []
    for raw in output.splitlines():
        line = strip_escape_codes(raw)
        if VERSION_HEADER_RE.match(line):
            block = []
        elif line.strip():
            block.append(line)
    return block


def format_size(kib: float) -> str:
    sign = "+" if kib >= 0 else "-"
    magnitude = abs(kib)
    if magnitude >= 1024 * 1024:
        return f"{sign}{magnitude / (1024 * 1024):.1f} GiB"
    if magnitude >= 1024:
        return f"{sign}{magnitude / 1024:.1f} MiB"
    return f"{sign}{magnitude:.1f} KiB"


def parse_diff_closures(output: str) -> PackageCompareResult:
    """Parse diff-closures text into version changes and a size note."""
    result = PackageCompareResult()
    total_kib = 0.0
    sized_paths = 0

    for line in last_transition(output):
        match = LINE_RE.match(line)
        if not match:
            continue
        name = match.group("name").strip()
        rest = match.group("rest").strip()

        size = SIZE_RE.search(rest)
        if size:
            amount = float(size.group("amount")) * _UNIT_KIB[size.group("unit")]
            total_kib += amount if size.group("sign") == "+" else -amount
            sized_paths += 1
            rest = rest[: size.start()].strip()

        if ARROW in rest:
            old, _, new = rest.partition(ARROW)
            result.changes.append((name, old.strip(), new.strip()))

    if sized_paths:
        noun = "path" if sized_paths == 1 else "paths"
        result.closure_summary = f"{format_size(total_kib)} ({sized_paths} {noun} changed size)"

    return result


async def parse_package_changes_from_history(
    cancel: Optional[CancellationToken] = None,
) -> PackageCompareResult:
    """Package changes of the latest system generation.

    Failures degrade to an empty result.
    """
    ok, stdout, stderr = await run_capture(
        "nix", ["profile", "diff-closures", "--profile", SYSTEM_PROFILE], cancel=cancel
    )
    if not ok:
        logger.warning("diff-closures failed: %s", stderr.strip())
        return PackageCompareResult()
    return parse_diff_closures(stdout)
