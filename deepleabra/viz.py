"""
DeepLeabra Visualization Tools

Layer connectivity graphs coloured by projection type, and per-unit
conductance bar plots.
"""

import numpy as np
import matplotlib.pyplot as plt
import networkx as nx

from deepleabra.prjn_types import PrjnType


# =============================================================================
# Color scheme for projection types
# =============================================================================
PRJN_COLORS = {
    # Standard Ge (grays)
    PrjnType.FORWARD: '#424242', PrjnType.BACK: '#757575',
    PrjnType.LATERAL: '#9E9E9E', PrjnType.INHIB: '#F44336',
    # Deep
    PrjnType.BURST_CTXT: '#3F51B5',
    PrjnType.BURST_TRC: '#FFB300',
    PrjnType.DEEP_ATTN: '#4CAF50',
}

CONDUCTANCE_FIELDS = ('ge', 'attn_ge', 'trc_burst_ge', 'deep_ctxt_ge')


def _get_color(prjn_type):
    return PRJN_COLORS.get(prjn_type, '#333333')


# =============================================================================
# Connectivity Graph
# =============================================================================
def connectivity_graph(net):
    """
    Build a networkx DiGraph of layers and projections.

    Nodes carry `n_units`; edges carry `prjn_type`, `n_syn` and `name`.
    Multiple projections between the same pair of layers are merged onto
    one edge, keeping the last one added.
    """
    G = nx.DiGraph()
    for name, lay in net.layers.items():
        G.add_node(name, n_units=lay.n)
    for pj in net.prjns:
        G.add_edge(pj.send.name, pj.recv.name,
                   prjn_type=pj.prjn_type, n_syn=pj.n_syn, name=pj.name)
    return G


def plot_connectivity(net, figsize=(8, 6), save_path=None):
    """
    Plot layer connectivity with edges coloured by projection type.

    Args:
        net: DeepNetwork
        figsize: figure size
        save_path: if provided, save figure to this path
    """
    G = connectivity_graph(net)
    pos = nx.circular_layout(G)

    fig, ax = plt.subplots(figsize=figsize)
    sizes = [300 + 20 * G.nodes[n]['n_units'] for n in G.nodes]
    nx.draw_networkx_nodes(G, pos, ax=ax, node_size=sizes,
                           node_color='#90CAF9', edgecolors='#1f77b4')
    nx.draw_networkx_labels(G, pos, ax=ax, font_size=9)

    edges = list(G.edges(data=True))
    colors = [_get_color(d['prjn_type']) for _, _, d in edges]
    nx.draw_networkx_edges(G, pos, ax=ax, edgelist=[(u, v) for u, v, _ in edges],
                           edge_color=colors, arrows=True,
                           connectionstyle='arc3,rad=0.1')

    # Legend: only types actually present
    present = sorted({d['prjn_type'] for _, _, d in edges})
    for ptyp in present:
        ax.plot([], [], color=_get_color(ptyp), label=ptyp.label)
    if present:
        ax.legend(loc='lower right', fontsize=8, frameon=False)

    ax.set_axis_off()
    ax.set_title(f'{net.name} connectivity', fontsize=12, fontweight='bold')
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
    return fig


# =============================================================================
# Conductance Bars
# =============================================================================
def plot_conductance(layer, fields=CONDUCTANCE_FIELDS, figsize=(10, 4), save_path=None):
    """
    Bar plot of per-unit conductances for one layer.

    Fields the layer does not have (e.g. attn_ge on a plain Layer) are skipped.

    Args:
        layer: Layer or DeepLayer (built)
        fields: conductance attribute names to plot
        figsize: figure size
        save_path: if provided, save figure
    """
    present = [f for f in fields if getattr(layer, f, None) is not None]
    n = len(present)
    fig, axes = plt.subplots(max(n, 1), 1, figsize=figsize, sharex=True, squeeze=False)
    axes = axes[:, 0]

    x = np.arange(layer.n)
    for ax, field in zip(axes, present):
        vals = getattr(layer, field)
        ax.bar(x, vals, color='#1f77b4', width=0.8)
        ax.set_ylabel(field, fontsize=8, rotation=0, ha='right', va='center')
        ax.spines['top'].set_visible(False)
        ax.spines['right'].set_visible(False)

    axes[-1].set_xlabel('Unit')
    fig.suptitle(f'{layer.name} conductances', fontsize=12, fontweight='bold')
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
    return fig
