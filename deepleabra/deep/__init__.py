"""
deepleabra.deep — DeepLeabra 扩展

- DeepLayer / DeepReceiver: 带 attn_ge / trc_burst_ge / deep_ctxt_ge 的层
- DeepPrjn: 注意与 burst 两条累加-清空通路
- DeepNetwork: 扇出/屏障/扇入调度
"""

from deepleabra.deep.layer import DeepLayer, DeepReceiver
from deepleabra.deep.prjn import DeepPrjn
from deepleabra.deep.network import DeepNetwork

__all__ = [
    'DeepLayer',
    'DeepReceiver',
    'DeepPrjn',
    'DeepNetwork',
]
