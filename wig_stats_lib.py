import os
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from wig_rand_lib import reference_bytes, validate_wig, build_content_table, eligibility_mask


def offset_composition(wig, reference, window_from, window_to, eligible=None):
    """
    Unit-weighted byte composition of the window around every eligible position.

    Args:
        wig: Sequence of unit counts
        reference: bytes/str aligned with `wig`
        window_from, window_to: Closed offset window
        eligible: Optional predicate position -> bool

    Returns:
        DataFrame indexed by offset, one column per observed byte (as a
        character), holding frequencies that sum to 1 per row. Offsets with no
        content are left out.
    """
    counts = validate_wig(wig)
    reference = reference_bytes(reference)
    mask = eligibility_mask(len(counts), eligible)
    content = build_content_table(counts, reference, window_from, window_to, mask)

    rows = {}
    for offset in sorted(content):
        values, freq = np.unique(np.asarray(content[offset], dtype=np.uint8), return_counts=True)
        rows[offset] = {chr(int(v)): f / freq.sum() for v, f in zip(values, freq)}

    df = pd.DataFrame.from_dict(rows, orient="index").fillna(0.0)
    df = df.reindex(sorted(df.columns), axis=1)
    df.index.name = "offset"
    return df


def composition_distance(before, after):
    """
    Largest absolute per-offset frequency difference between two composition
    tables. Cells missing from one table count as 0.
    """
    if before.empty and after.empty:
        return 0.0
    a, b = before.align(after, join="outer", fill_value=0.0)
    return float((a - b).abs().to_numpy().max())


def check_conservation(before, after, eligible=None):
    """
    Compares a wig with its redistributed version.

    Returns:
        dict with total_before, total_after, conserved (totals equal) and
        confined (every ineligible position unchanged)
    """
    before = validate_wig(before)
    after = validate_wig(after)
    if len(before) != len(after):
        raise ValueError(f"wig lengths differ: {len(before)} != {len(after)}")

    mask = eligibility_mask(len(before), eligible)
    total_before = int(before.sum())
    total_after = int(after.sum())
    return {
        "total_before": total_before,
        "total_after": total_after,
        "conserved": total_before == total_after,
        "confined": bool(np.array_equal(before[~mask], after[~mask])),
    }


def save_wig_comparison(before, after, output_dir, filename="wig_comparison.png"):
    """
    Plots the original and redistributed unit counts side by side.
    """
    before = validate_wig(before)
    after = validate_wig(after)
    positions = np.arange(len(before))

    fig, axes = plt.subplots(2, 1, figsize=(12, 6), sharex=True)
    axes[0].bar(positions, before, color='steelblue', width=1.0)
    axes[0].set_ylabel("Units")
    axes[0].set_title(f"Original wig (total {before.sum()})")
    axes[1].bar(positions, after, color='darkorange', width=1.0)
    axes[1].set_ylabel("Units")
    axes[1].set_xlabel("Position")
    axes[1].set_title(f"Redistributed wig (total {after.sum()})")

    plt.tight_layout()
    path = os.path.join(output_dir, filename)
    plt.savefig(path, dpi=300)
    plt.close(fig)
    return path


def save_composition_plot(before_comp, after_comp, output_dir, filename="composition_comparison.png"):
    """
    Stacked bars of byte frequency per window offset, before vs after.
    """
    before_comp, after_comp = before_comp.align(after_comp, join="outer", fill_value=0.0)

    fig, axes = plt.subplots(1, 2, figsize=(12, 5), sharey=True)
    for ax, comp, title in [(axes[0], before_comp, "Source composition"),
                            (axes[1], after_comp, "Target composition")]:
        if comp.empty:
            ax.set_title(f"{title} (empty)")
            continue
        comp.plot(kind='bar', stacked=True, ax=ax, colormap='tab10', legend=False)
        ax.set_title(title)
        ax.set_xlabel("Offset")
    axes[0].set_ylabel("Frequency")

    handles, labels = axes[0].get_legend_handles_labels()
    if not handles:
        handles, labels = axes[1].get_legend_handles_labels()
    if handles:
        fig.legend(handles, labels, title="Byte", loc='upper right')

    plt.tight_layout()
    path = os.path.join(output_dir, filename)
    plt.savefig(path, dpi=300)
    plt.close(fig)
    return path
