"""
DeepLayer — 带深层电导字段的层

在 Layer 基础上增加 (每单元):
  attn_ge:        注意调制电导, 由 DEEP_ATTN 投射写入
  trc_burst_ge:   丘脑中继 burst 电导, 由 BURST_TRC 投射写入
  deep_ctxt_ge:   深层上下文电导, 由 BURST_CTXT 投射写入
  deep_burst:     本层的 burst 活跃度 (BURST_TRC / BURST_CTXT 的发送信号)
  deep_burst_sent: 上次发送时的 deep_burst

DeepReceiver 协议 (依赖反转):
  深层投射的 recv_* 只依赖这个结构化接口, 不依赖具体类型。
  DeepLayer 天然满足此接口。
"""

import logging
from typing import Optional, Protocol, runtime_checkable

import numpy as np

from deepleabra.core.layer import Layer, compute_deltas

logger = logging.getLogger(__name__)


@runtime_checkable
class DeepReceiver(Protocol):
    """任何能接收深层电导的层"""
    n: int
    attn_ge: np.ndarray
    trc_burst_ge: np.ndarray
    deep_ctxt_ge: np.ndarray


class DeepLayer(Layer):
    """DeepLeabra 层

    浅层 (superficial)、深层 (deep) 与丘脑中继 (TRC) 都用同一个类表示,
    角色由连接它的投射类型决定。
    """

    def __init__(self, name, shape, params=None):
        super().__init__(name, shape, params)
        self.attn_ge: Optional[np.ndarray] = None
        self.trc_burst_ge: Optional[np.ndarray] = None
        self.deep_ctxt_ge: Optional[np.ndarray] = None
        self.deep_burst: Optional[np.ndarray] = None
        self.deep_burst_sent: Optional[np.ndarray] = None

    def _alloc(self, n: int) -> None:
        super()._alloc(n)
        self.attn_ge = np.zeros(n)
        self.trc_burst_ge = np.zeros(n)
        self.deep_ctxt_ge = np.zeros(n)
        self.deep_burst = np.zeros(n)
        self.deep_burst_sent = np.zeros(n)

    def init_acts(self) -> None:
        super().init_acts()
        self.attn_ge[:] = 0.0
        self.trc_burst_ge[:] = 0.0
        self.deep_ctxt_ge[:] = 0.0
        self.deep_burst[:] = 0.0
        self.deep_burst_sent[:] = 0.0

    def burst_fm_act(self, in_burst_qtr: bool, thr: float) -> None:
        """由 act 计算 deep_burst

        burst 象限内: act > thr 的单元 deep_burst = act, 其余为 0。
        burst 象限外: 全部为 0。
        """
        self._require_built()
        if not in_burst_qtr:
            self.deep_burst[:] = 0.0
            return
        self.deep_burst[:] = np.where(self.act > thr, self.act, 0.0)

    def compute_burst_deltas(self) -> np.ndarray:
        """deep_burst 的 delta 判定 (阈值与 act 相同), 更新 deep_burst_sent"""
        self._require_built()
        return compute_deltas(self.deep_burst, self.deep_burst_sent,
                              self.params.opt_thresh_send,
                              self.params.opt_thresh_delta)
