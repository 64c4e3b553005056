import matplotlib  # type: ignore
import matplotlib.pyplot as plt  # type: ignore
import numpy as np
from typing import Literal, Optional


def panel_grid(num_panels: int, sharey: bool = True):
    """a grid of subplots with at least `num_panels` axes"""
    nrows = max(1, int(np.sqrt(num_panels)))
    ncols = num_panels // nrows + (0 if num_panels % nrows == 0 else 1)
    fig, axs = plt.subplots(
        nrows,
        ncols,
        figsize=(4 * ncols, 3 * nrows),
        sharex=True,
        sharey=sharey,
        squeeze=False,
    )
    axs = axs.flatten()
    # remove unused axes
    for ax in axs[num_panels:]:
        ax.axis("off")
    return fig, axs[:num_panels]


def plot_panel(
    ax,
    data_x: np.ndarray,
    data_y: np.ndarray,
    grid_x: np.ndarray,
    fitted: np.ndarray,
    line_idx: np.ndarray,
    cp_draws: list[np.ndarray],
    fit_band: Optional[tuple[np.ndarray, np.ndarray]] = None,
    pred_band: Optional[tuple[np.ndarray, np.ndarray]] = None,
    title: Optional[str] = None,
) -> None:
    """
    Plot data, fitted lines for a selection of draws, quantile bands
    and the densities of the change points along the x-axis.
    `fitted` has shape (S, len(grid_x)).
    """
    colors = list(matplotlib.colors.TABLEAU_COLORS.values())
    ax.scatter(data_x, data_y, s=15, color="k", zorder=3, linewidths=0)
    for s in line_idx:
        ax.plot(grid_x, fitted[s], color="tab:gray", alpha=0.3, linewidth=1, zorder=2)
    if fit_band is not None:
        ax.plot(grid_x, fit_band[0], color="tab:red", linestyle="--", zorder=2)
        ax.plot(grid_x, fit_band[1], color="tab:red", linestyle="--", zorder=2)
    if pred_band is not None:
        ax.fill_between(
            grid_x, pred_band[0], pred_band[1], color="tab:green", alpha=0.2,
            linewidth=0, zorder=1,
        )
    if len(cp_draws) > 0:
        # change point densities occupy the lower part of the panel
        twin = ax.twinx()
        max_dens = 0.0
        for k, cp in enumerate(cp_draws):
            dens, _, _ = twin.hist(
                cp, bins=50, density=True, color=colors[k % len(colors)], alpha=0.5,
                linewidth=0,
            )
            max_dens = max(max_dens, np.max(dens))
        twin.set_ylim(0, 5 * max_dens if max_dens > 0 else 1)
        twin.set_yticks([])
    if title is not None:
        ax.set_title(title)


def plot_pars(
    chains: dict[str, np.ndarray], kind: Literal["trace", "dens"] = "trace"
) -> plt.Figure:
    """
    Trace plots or density plots per chain. The values of `chains` have
    shape (num_chains, num_draws).
    """
    if kind not in ("trace", "dens"):
        raise ValueError(f"invalid kind '{kind}'. Choose 'trace' or 'dens'")
    names = list(chains.keys())
    fig, axs = plt.subplots(
        len(names), 1, figsize=(6, 2 * len(names)), squeeze=False
    )
    colors = list(matplotlib.colors.TABLEAU_COLORS.values())
    for ax, name in zip(axs.flatten(), names):
        for c, draws in enumerate(chains[name]):
            color = colors[c % len(colors)]
            if kind == "trace":
                ax.plot(draws, color=color, linewidth=0.5, alpha=0.8)
            else:
                ax.hist(draws, bins=50, density=True, histtype="step", color=color)
        if kind == "trace":
            ax.set_ylabel(name)
        else:
            ax.set_xlabel(name)
    fig.tight_layout()
    return fig
