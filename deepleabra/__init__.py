"""
DeepLeabra — 深层预测编码投射 (NumPy 向量化)

分层:
- Layer 0: prjn_types (投射类型枚举), errors (异常层级)
- Layer 1: core (Layer, Prjn, 参数) — 基础速率编码突触引擎
- Layer 2: deep (DeepLayer, DeepPrjn, DeepNetwork) — 注意/burst 两条电导通路
- viz: 连接图与电导可视化 (需 matplotlib / networkx)
"""

from deepleabra.prjn_types import PrjnType
from deepleabra.errors import (
    DeepLeabraError,
    BuildError,
    IndexViolation,
    ReceiverCapabilityError,
    ConfigurationError,
)
from deepleabra.core import Layer, Prjn
from deepleabra.deep import DeepLayer, DeepPrjn, DeepReceiver, DeepNetwork

__version__ = "0.1.0"

__all__ = [
    "PrjnType",
    # 异常
    "DeepLeabraError",
    "BuildError",
    "IndexViolation",
    "ReceiverCapabilityError",
    "ConfigurationError",
    # 基础引擎
    "Layer",
    "Prjn",
    # 深层
    "DeepLayer",
    "DeepPrjn",
    "DeepReceiver",
    "DeepNetwork",
]
