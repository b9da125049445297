"""
Check plots for decoded PX4 ULog files.

One figure per logged message, one subplot per channel, all against the
message timestamp in seconds. Useful as a quick check that a file decoded
correctly.
"""

import math
import os

import numpy as np


TITLE_FS = 10
TICK_FS  = 7
LW       = 0.7


def _time_axis(table):
    """Return (name, seconds) of the channel used as x axis.

    'timestamp' when the message has one, otherwise its first channel.
    """
    name = 'timestamp' if 'timestamp' in table else next(iter(table))
    return name, np.asarray(table[name], dtype=np.float64) / 1e6


def plot_logs(result, outdir=None, names=None):
    """Generate check plots from a DecodeResult.

    Parameters
    ----------
    result : DecodeResult
        Output from px4_ulog.decode() or read_ulog().
    outdir : str or Path or None
        Directory to save one PNG per logged message into; if None,
        plt.show().
    names : iterable of str, optional
        Only plot these logged messages.

    Returns
    -------
    list of str
        Paths of the saved figures (empty when showing interactively).
    """
    import matplotlib
    if outdir is not None:
        matplotlib.use('Agg')
    import matplotlib.pyplot as plt

    if outdir is not None:
        os.makedirs(outdir, exist_ok=True)

    saved = []
    for log_name, table in result.logs.items():
        if names is not None and log_name not in names:
            continue
        if not table:
            continue

        t_name, t = _time_axis(table)
        channels = [c for c in table if c != t_name]
        if not channels:
            continue

        n_rows = math.ceil(math.sqrt(len(channels)))
        n_cols = math.ceil(len(channels) / n_rows)
        fig, axes = plt.subplots(n_rows, n_cols, figsize=(4 * n_cols, 2.6 * n_rows),
                                 squeeze=False, constrained_layout=True)
        fig.suptitle(log_name if not result.filename else f'{result.filename} | {log_name}',
                     fontsize=TITLE_FS + 2, fontweight='bold')

        for ax, channel in zip(axes.flat, channels):
            ax.plot(t, table[channel], lw=LW)
            ax.set_title(channel, fontsize=TITLE_FS)
            ax.tick_params(labelsize=TICK_FS)
        for ax in list(axes.flat)[len(channels):]:
            ax.set_visible(False)

        if outdir is not None:
            outpath = os.path.join(str(outdir), f'{log_name}.png')
            fig.savefig(outpath, dpi=100)
            plt.close(fig)
            saved.append(outpath)

    if outdir is None:
        plt.show()

    return saved
