import collections
import re
import numpy as np


# ==========================================
# 1. CONSTANTS & ERRORS
# ==========================================

# Consecutive failed draws tolerated by context_preserving_scatter before giving up.
MAX_CONSECUTIVE_FAILURES = 1000

# Units drawn per batch by unit_scatter; bounds its scratch memory.
UNIT_DRAW_CHUNK = 2 ** 16

# Placeholder used in a drawn pattern for offsets with no observed content.
WILDCARD = None


class WigShuffleError(Exception):
    """Base class for all redistribution failures."""


class InvalidWindowError(WigShuffleError, ValueError):
    pass


class LengthMismatchError(WigShuffleError, ValueError):
    pass


class NoEligiblePositionsError(WigShuffleError, ValueError):
    pass


class PlacementExhaustedError(WigShuffleError, RuntimeError):
    """
    Raised when context_preserving_scatter runs out of retries with units left.

    The partially filled distribution is kept on the exception so callers can
    inspect (or save) what was placed before the sampler gave up.
    """

    def __init__(self, result, unplaced, max_tries):
        self.result = result
        self.unplaced = unplaced
        self.max_tries = max_tries
        super().__init__(
            f"{unplaced} unit(s) left unplaced after {max_tries} consecutive failed draws"
        )


# ==========================================
# 2. SHARED HELPERS
# ==========================================

def validate_wig(wig):
    """
    Validates a distribution and returns a private int64 copy of it.
    """
    arr = np.asarray(wig)
    if arr.ndim != 1:
        raise ValueError(f"wig must be one-dimensional, got shape {arr.shape}")
    if arr.size == 0:
        return np.zeros(0, dtype=np.int64)
    if not np.issubdtype(arr.dtype, np.integer):
        raise ValueError(f"wig must hold integer unit counts, got dtype {arr.dtype}")
    if (arr < 0).any():
        raise ValueError(f"wig counts must be non-negative, got minimum {arr.min()}")
    return arr.astype(np.int64)


def reference_bytes(reference):
    if isinstance(reference, str):
        return reference.encode("ascii")
    return bytes(reference)


def eligibility_mask(length, eligible=None):
    """
    Evaluates the eligibility predicate once per position.

    Args:
        length: Number of positions in the wig
        eligible: Callable position -> bool, or None (every position eligible)

    Returns:
        Boolean numpy array of size `length`
    """
    if eligible is None:
        return np.ones(length, dtype=bool)
    return np.fromiter((bool(eligible(i)) for i in range(length)), dtype=bool, count=length)


def eligible_positions(length, eligible=None):
    """Returns the eligible positions in increasing order."""
    return np.flatnonzero(eligibility_mask(length, eligible))


# ==========================================
# 3. UNIT SCATTER
# ==========================================

def unit_scatter(wig, eligible=None, rng=None):
    """
    Assigns every unit of value at an eligible position to a random eligible
    position, independently of the other units.

    Positions for which `eligible` returns False keep their value and never
    receive units. The input is not modified.

    Args:
        wig: Sequence of non-negative integer unit counts
        eligible: Optional predicate position -> bool (None = all eligible)
        rng: numpy Generator, int seed or None

    Returns:
        New int64 array with the same total mass
    """
    result = validate_wig(wig)
    rng = np.random.default_rng(rng)

    mask = eligibility_mask(len(result), eligible)
    valids = np.flatnonzero(mask)
    avail_units = int(result[mask].sum())

    if avail_units > 0 and len(valids) == 0:
        raise NoEligiblePositionsError(f"{avail_units} unit(s) to place but no eligible position")

    # One uniform draw per unit, taken in bounded chunks and folded into per-position counts.
    counts = np.zeros(len(valids), dtype=np.int64)
    remaining = avail_units
    while remaining > 0:
        size = min(remaining, UNIT_DRAW_CHUNK)
        counts += np.bincount(rng.integers(len(valids), size=size), minlength=len(valids))
        remaining -= size

    result[valids] = counts
    return result


# ==========================================
# 4. POSITION SHUFFLE
# ==========================================

def position_shuffle(wig, eligible=None, rng=None):
    """
    Moves all units of an eligible position to a random eligible position,
    jointly. The values at eligible positions are permuted; ineligible
    positions are neither read nor written.

    This is an inside-out Fisher-Yates shuffle over the eligible positions
    visited in increasing order. Returns a new array; the input is untouched.
    """
    result = validate_wig(wig)
    rng = np.random.default_rng(rng)

    seen = []
    for i in range(len(result)):
        if eligible is not None and not eligible(i):
            continue
        seen.append(i)
        j = seen[rng.integers(len(seen))]
        result[i], result[j] = result[j], result[i]

    return result


# ==========================================
# 5. CONTEXT PRESERVING SCATTER
# ==========================================

def build_content_table(wig, reference, window_from, window_to, mask):
    """
    Collects the bytes around every eligible source position, per offset.

    Each byte is repeated once per unit at its source position so that drawing
    uniformly from a list reproduces the unit-weighted composition.

    Args:
        wig: int64 array of unit counts
        reference: bytes aligned with `wig`
        window_from, window_to: Closed offset window around a position
        mask: Boolean eligibility array

    Returns:
        defaultdict(list) mapping offset -> list of byte values
    """
    content = collections.defaultdict(list)
    length = len(reference)
    for pos in np.flatnonzero((wig > 0) & mask):
        units = int(wig[pos])
        for j in range(window_from, window_to + 1):
            if pos + j < 0 or pos + j >= length:
                continue
            content[j].extend([reference[pos + j]] * units)
    return content


def draw_pattern(content, window_from, window_to, rng):
    """
    Draws one byte per window offset from the content table.

    Offsets without content are returned as WILDCARD.
    """
    pattern = []
    for j in range(window_from, window_to + 1):
        at_j = content.get(j)
        if not at_j:
            pattern.append(WILDCARD)
            continue
        pattern.append(at_j[rng.integers(len(at_j))])
    return pattern


def find_pattern_matches(reference, pattern):
    """
    Finds every start offset (overlapping ones included) at which `pattern`
    occurs in `reference`. WILDCARD entries match any single byte.
    """
    body = b"".join(
        b"." if b is WILDCARD else re.escape(bytes([b])) for b in pattern
    )
    regex = re.compile(b"(?=" + body + b")", re.DOTALL)
    return [m.start() for m in regex.finditer(reference)]


def context_preserving_scatter(wig, reference, window_from, window_to, eligible,
                               rng=None, max_tries=MAX_CONSECUTIVE_FAILURES):
    """
    Assigns each unit of value at an eligible position to a random eligible
    position while keeping the byte content of `reference` in the window
    [window_from, window_to] around the position.

    For every unit a byte is drawn per window offset from the bytes seen at that
    offset around the source units. The resulting pattern is searched in the
    reference and one of its occurrences is picked uniformly; the unit lands on
    the occurrence start minus `window_from`. Draws whose pattern does not occur,
    or whose target position is ineligible or outside the wig, count as
    failures. After `max_tries` consecutive failures the sampler gives up.

    Args:
        wig: Sequence of non-negative integer unit counts
        reference: bytes/str of the same length as `wig`
        window_from, window_to: Offsets of the context window (from <= to)
        eligible: Predicate position -> bool (required)
        rng: numpy Generator, int seed or None
        max_tries: Consecutive failures allowed before giving up

    Returns:
        New int64 array with the same total mass

    Raises:
        InvalidWindowError, LengthMismatchError: on bad arguments
        PlacementExhaustedError: if units remain when the retries run out
    """
    if window_from > window_to:
        raise InvalidWindowError(f"window_from must be <= window_to, got ({window_from}, {window_to})")
    if not callable(eligible):
        raise ValueError(f"eligible must be a callable predicate, got {eligible!r}")
    if max_tries < 1:
        raise ValueError(f"max_tries must be positive, got {max_tries}")

    source = validate_wig(wig)
    reference = reference_bytes(reference)
    if len(reference) != len(source):
        raise LengthMismatchError(
            f"reference length {len(reference)} != wig length {len(source)}"
        )
    rng = np.random.default_rng(rng)

    wig_length = len(source)
    mask = eligibility_mask(wig_length, eligible)
    content = build_content_table(source, reference, window_from, window_to, mask)
    avail_units = int(source[mask].sum())

    placed = np.zeros(wig_length, dtype=np.int64)
    # Patterns repeat often for short windows; search each distinct one once.
    match_cache = {}

    tries = 0
    while avail_units > 0 and tries < max_tries:
        key = tuple(draw_pattern(content, window_from, window_to, rng))
        if key not in match_cache:
            match_cache[key] = find_pattern_matches(reference, key)
        matches = match_cache[key]
        if not matches:
            tries += 1
            continue

        pos = matches[rng.integers(len(matches))] - window_from
        if pos < 0 or pos >= wig_length or not mask[pos]:
            tries += 1
            continue

        placed[pos] += 1
        avail_units -= 1
        tries = 0

    result = source.copy()
    result[mask] = placed[mask]

    if avail_units > 0:
        raise PlacementExhaustedError(result, avail_units, max_tries)
    return result
