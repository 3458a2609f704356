#!/usr/bin/env python3
"""
Wig Redistribution Script
=========================

Randomizes a wig (per-position unit counts, e.g. mutation counts) with one of
the three redistribution models in wig_rand_lib.py and writes the result next
to a conservation / composition summary.

Modes:
    unit      every unit moves to a random eligible position independently
    position  the values of eligible positions are permuted jointly
    context   every unit moves to a position whose reference context in
              [window_from, window_to] matches the context of the source units

Usage:
    python run_wig_shuffle.py --wig counts.csv --mode context \
                              --reference reference.fasta --window_from -1 --window_to 1 \
                              --eligible_mod 3 --eligible_offset 0 \
                              --output_dir ./wig_shuffle_output
"""

import argparse
import os
import sys
import json
from datetime import datetime
import numpy as np
import pandas as pd
from Bio import SeqIO

from wig_rand_lib import (
    MAX_CONSECUTIVE_FAILURES,
    PlacementExhaustedError,
    context_preserving_scatter,
    position_shuffle,
    unit_scatter,
)
from wig_stats_lib import (
    check_conservation,
    composition_distance,
    offset_composition,
    save_composition_plot,
    save_wig_comparison,
)

MODES = ("unit", "position", "context")


def load_wig(wig_path, length=None):
    """
    Load a wig from CSV.

    The file needs a `count` column. If a `position` column is present the
    counts are placed at those positions and gaps are filled with 0 (up to
    `length` when given); otherwise rows are taken in file order.
    """
    df = pd.read_csv(wig_path)
    if 'count' not in df.columns:
        raise ValueError(f"{wig_path} has no 'count' column, got columns {list(df.columns)}")

    if 'position' not in df.columns:
        wig = df['count'].to_numpy(dtype=np.int64)
        if length is not None and len(wig) != length:
            raise ValueError(f"wig length {len(wig)} != expected length {length}")
        return wig

    positions = df['position'].to_numpy(dtype=np.int64)
    if len(positions) and positions.min() < 0:
        raise ValueError(f"positions must be non-negative, got {positions.min()}")
    if positions.size != np.unique(positions).size:
        raise ValueError(f"{wig_path} lists the same position more than once")

    size = int(positions.max()) + 1 if len(positions) else 0
    if length is not None:
        if size > length:
            raise ValueError(f"position {size - 1} is outside a wig of length {length}")
        size = length

    wig = np.zeros(size, dtype=np.int64)
    wig[positions] = df['count'].to_numpy(dtype=np.int64)
    return wig


def load_reference(reference_path):
    """Read the first record of a FASTA file as upper-case ASCII bytes."""
    record = next(SeqIO.parse(reference_path, "fasta"), None)
    if record is None:
        raise ValueError(f"No FASTA record found in {reference_path}")
    return str(record.seq).upper().encode("ascii")


def make_modulo_predicate(eligible_mod, eligible_offset):
    """Position i is eligible iff i % eligible_mod == eligible_offset."""
    if eligible_mod < 1:
        raise ValueError(f"eligible_mod must be positive, got {eligible_mod}")
    if not 0 <= eligible_offset < eligible_mod:
        raise ValueError(f"eligible_offset must be in [0, {eligible_mod}), got {eligible_offset}")
    return lambda i: i % eligible_mod == eligible_offset


def save_wig_csv(wig, path):
    pd.DataFrame({'position': np.arange(len(wig)), 'count': wig}).to_csv(path, index=False)


def run_wig_shuffle(
    wig_path: str,
    output_dir: str,
    mode: str = "unit",
    reference_path: str = None,
    window_from: int = 0,
    window_to: int = 0,
    eligible_mod: int = 1,
    eligible_offset: int = 0,
    seed: int = 42,
    max_tries: int = MAX_CONSECUTIVE_FAILURES
):
    """
    Randomize a wig and write the result with summary statistics.

    Args:
        wig_path: CSV with a `count` column (optionally `position`)
        output_dir: Directory for output files
        mode: One of 'unit', 'position', 'context'
        reference_path: FASTA reference (required for 'context')
        window_from, window_to: Context window around each position
        eligible_mod, eligible_offset: Position i is eligible iff i % mod == offset
        seed: Random seed for reproducibility
        max_tries: Consecutive failed draws allowed in 'context' mode

    Returns:
        dict summary (also saved as summary.json)
    """
    if mode not in MODES:
        raise ValueError(f"mode must be one of {MODES}, got {mode!r}")
    if mode == "context" and not reference_path:
        raise ValueError("mode 'context' needs a reference FASTA")

    print("=" * 80)
    print("WIG REDISTRIBUTION")
    print("=" * 80)
    print(f"Configuration:")
    print(f"  Wig: {wig_path}")
    print(f"  Mode: {mode}")
    if reference_path:
        print(f"  Reference: {reference_path}")
    if mode == "context":
        print(f"  Window: [{window_from}, {window_to}]")
        print(f"  Max consecutive failures: {max_tries}")
    print(f"  Eligible positions: i % {eligible_mod} == {eligible_offset}")
    print(f"  Output directory: {output_dir}")
    print(f"  Random seed: {seed}")
    print("=" * 80)

    os.makedirs(output_dir, exist_ok=True)

    config = {
        "wig_path": wig_path,
        "mode": mode,
        "reference_path": reference_path,
        "window_from": window_from,
        "window_to": window_to,
        "eligible_mod": eligible_mod,
        "eligible_offset": eligible_offset,
        "seed": seed,
        "max_tries": max_tries,
        "timestamp": datetime.now().isoformat()
    }
    with open(os.path.join(output_dir, "config.json"), "w") as f:
        json.dump(config, f, indent=2)

    reference = None
    if reference_path:
        reference = load_reference(reference_path)
        print(f"Loaded reference from {reference_path} ({len(reference)} bp)")

    wig = load_wig(wig_path, length=len(reference) if reference is not None else None)
    print(f"Loaded wig from {wig_path}: {len(wig)} positions, {wig.sum()} units")

    eligible = make_modulo_predicate(eligible_mod, eligible_offset)
    rng = np.random.default_rng(seed)

    if mode == "unit":
        shuffled = unit_scatter(wig, eligible, rng=rng)
    elif mode == "position":
        shuffled = position_shuffle(wig, eligible, rng=rng)
    else:
        try:
            shuffled = context_preserving_scatter(
                wig, reference, window_from, window_to, eligible, rng=rng, max_tries=max_tries
            )
        except PlacementExhaustedError as e:
            partial_path = os.path.join(output_dir, "shuffled_wig_partial.csv")
            save_wig_csv(e.result, partial_path)
            print(f"WARNING: {e.unplaced} unit(s) could not be placed; partial wig saved to {partial_path}")
            raise
    print(f"✓ Redistribution complete.")

    save_wig_csv(shuffled, os.path.join(output_dir, "shuffled_wig.csv"))
    print(f"✓ Saved shuffled_wig.csv to {output_dir}")

    summary = check_conservation(wig, shuffled, eligible)
    summary["mode"] = mode
    summary["positions"] = int(len(wig))

    if mode == "context":
        before_comp = offset_composition(wig, reference, window_from, window_to, eligible)
        after_comp = offset_composition(shuffled, reference, window_from, window_to, eligible)
        summary["composition_distance"] = composition_distance(before_comp, after_comp)
        save_composition_plot(before_comp, after_comp, output_dir)
        print(f"✓ Saved composition_comparison.png to {output_dir}")
        print(f"  Max per-offset composition difference: {summary['composition_distance']:.4f}")

    save_wig_comparison(wig, shuffled, output_dir)
    print(f"✓ Saved wig_comparison.png to {output_dir}")

    with open(os.path.join(output_dir, "summary.json"), "w") as f:
        json.dump(summary, f, indent=2)

    print("\n" + "=" * 80)
    print("REDISTRIBUTION COMPLETE")
    print("=" * 80)
    print(f"  Units before: {summary['total_before']}, after: {summary['total_after']}")
    print(f"  Mass conserved: {summary['conserved']}")
    print(f"  Ineligible positions unchanged: {summary['confined']}")
    print("=" * 80)

    return summary


def main():
    parser = argparse.ArgumentParser(
        description="Randomize a wig of per-position unit counts",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    # Input parameters
    parser.add_argument("--wig", type=str, required=True,
                        help="CSV with a 'count' column (and optional 'position' column)")
    parser.add_argument("--reference", type=str, default=None,
                        help="Reference FASTA aligned with the wig (required for context mode)")

    # Model parameters
    parser.add_argument("--mode", type=str, default="unit", choices=MODES,
                        help="Redistribution model")
    parser.add_argument("--window_from", type=int, default=0,
                        help="First offset of the context window (context mode)")
    parser.add_argument("--window_to", type=int, default=0,
                        help="Last offset of the context window (context mode)")
    parser.add_argument("--max_tries", type=int, default=MAX_CONSECUTIVE_FAILURES,
                        help="Consecutive failed draws before giving up (context mode)")
    parser.add_argument("--eligible_mod", type=int, default=1,
                        help="Position i is eligible iff i %% eligible_mod == eligible_offset")
    parser.add_argument("--eligible_offset", type=int, default=0,
                        help="See --eligible_mod")

    # Output parameters
    parser.add_argument("--output_dir", type=str, default="./wig_shuffle_output",
                        help="Output directory for results")
    parser.add_argument("--seed", type=int, default=42,
                        help="Random seed for reproducibility")

    args = parser.parse_args()

    # Validate arguments
    if args.mode == "context" and not args.reference:
        print("ERROR: --reference is required for context mode")
        sys.exit(1)

    if args.window_from > args.window_to:
        print("ERROR: window_from must be <= window_to")
        sys.exit(1)

    if args.eligible_mod < 1:
        print("ERROR: eligible_mod must be >= 1")
        sys.exit(1)

    if not 0 <= args.eligible_offset < args.eligible_mod:
        print("ERROR: eligible_offset must satisfy 0 <= eligible_offset < eligible_mod")
        sys.exit(1)

    if args.max_tries < 1:
        print("ERROR: max_tries must be >= 1")
        sys.exit(1)

    try:
        run_wig_shuffle(
            wig_path=args.wig,
            output_dir=args.output_dir,
            mode=args.mode,
            reference_path=args.reference,
            window_from=args.window_from,
            window_to=args.window_to,
            eligible_mod=args.eligible_mod,
            eligible_offset=args.eligible_offset,
            seed=args.seed,
            max_tries=args.max_tries
        )
    except PlacementExhaustedError as e:
        print(f"ERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
