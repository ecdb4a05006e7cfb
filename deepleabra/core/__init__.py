"""
deepleabra.core — 基础速率编码突触引擎

提供 Layer 和 Prjn 两大基础组件:
稀疏压缩连接、权重存储、ge_scale 与标准 Ge delta 通路。
"""

from deepleabra.core.layer import Layer
from deepleabra.core.prjn import Prjn
from deepleabra.core.params import (
    WtInitParams,
    WtScaleParams,
    LayerParams,
    DeepParams,
    DEFAULT_WT_INIT,
    DEFAULT_WT_SCALE,
    DEFAULT_LAYER,
    DEFAULT_DEEP,
)

__all__ = [
    'Layer',
    'Prjn',
    'WtInitParams',
    'WtScaleParams',
    'LayerParams',
    'DeepParams',
    'DEFAULT_WT_INIT',
    'DEFAULT_WT_SCALE',
    'DEFAULT_LAYER',
    'DEFAULT_DEEP',
]
