"""
DeepPrjn — DeepLeabra 投射

在基础 Prjn 之上增加两个每接收单元的局部累加器:
  attn_ge_inc[Nr]:      AttnGe 增量 (DEEP_ATTN 通路)
  trc_burst_ge_inc[Nr]: TRCBurstGe / DeepCtxtGe 增量 (BURST_TRC / BURST_CTXT 通路)

两阶段协议:
  扇出 (可并行): 发送者调用 send_*_delta(si, delta) 把
      delta · ge_scale · wt[k] 散射到 acc[scon_idx[k]]
  屏障
  扇入 (单线程): recv_*_inc() 把 acc[i] 加到接收层对应字段并清零

并发策略: 按发送者分区的私有部分累加器。
  send_*_delta / send_*_deltas 的 out 参数指定私有缓冲;
  屏障之后由调度方调用 merge_*_inc(partial) 按固定顺序合并。
  不带 out 的直接调用是单写者操作, 不可跨线程共享。

累加器不变量:
  - 长度 == 接收层单元数, 索引 i 始终对应接收单元 i
  - 每次 recv 开始与结束时 (recv 之后) 全部为 0
"""

import logging
from typing import Optional

import numpy as np

from deepleabra.core.prjn import Prjn
from deepleabra.deep.layer import DeepReceiver
from deepleabra.errors import BuildError, IndexViolation, ReceiverCapabilityError

logger = logging.getLogger(__name__)


class DeepPrjn(Prjn):
    """DeepLeabra 投射 — 基础投射 + 注意/burst 两条电导通路

    使用示例:
        pj = DeepPrjn(super_lay, trc_lay, PrjnType.BURST_TRC)
        pj.build()
        pj.init_weights(rng)

        for si, d in zip(idx, burst_deltas):
            pj.send_trc_burst_ge_delta(si, d)
        pj.recv_trc_burst_ge_inc()
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.attn_ge_inc: Optional[np.ndarray] = None
        self.trc_burst_ge_inc: Optional[np.ndarray] = None

    # =========================================================================
    # 生命周期
    # =========================================================================

    def build(self) -> None:
        """基础 build 成功后, 按接收层单元数分配两个零累加器

        基础 build 的 BuildError 原样传播, 此时不分配累加器。
        """
        try:
            super().build()
        except BuildError:
            logger.debug("build prjn %s failed, deep accumulators not allocated", self.name)
            raise
        nr = self.recv.n
        self.attn_ge_inc = np.zeros(nr)
        self.trc_burst_ge_inc = np.zeros(nr)

    def init_ge_inc(self) -> None:
        """清空基础与两个深层累加器 (幂等)"""
        super().init_ge_inc()
        self.attn_ge_inc[:] = 0.0
        self.trc_burst_ge_inc[:] = 0.0

    # =========================================================================
    # 发送
    # =========================================================================

    def send_attn_ge_delta(self, si: int, delta: float,
                           out: Optional[np.ndarray] = None) -> None:
        """发送者 si 的注意 delta → attn_ge_inc (或 out)"""
        self._scatter(self.attn_ge_inc, si, delta, out)

    def send_trc_burst_ge_delta(self, si: int, delta: float,
                                out: Optional[np.ndarray] = None) -> None:
        """发送者 si 的 DeepBurst delta → trc_burst_ge_inc (或 out)"""
        self._scatter(self.trc_burst_ge_inc, si, delta, out)

    def send_attn_ge_deltas(self, deltas, out: Optional[np.ndarray] = None,
                            lo: int = 0, hi: Optional[int] = None) -> None:
        """批量注意发送, 等价于对 [lo, hi) 内每个发送者依次调用 send_attn_ge_delta"""
        self._scatter_range(self.attn_ge_inc, deltas, out, lo, hi)

    def send_trc_burst_ge_deltas(self, deltas, out: Optional[np.ndarray] = None,
                                 lo: int = 0, hi: Optional[int] = None) -> None:
        """批量 burst 发送"""
        self._scatter_range(self.trc_burst_ge_inc, deltas, out, lo, hi)

    # =========================================================================
    # 屏障合并
    # =========================================================================

    def merge_attn_ge_inc(self, partial: np.ndarray) -> None:
        """把一个私有部分累加器加入 attn_ge_inc"""
        self._merge(self.attn_ge_inc, partial)

    def merge_trc_burst_ge_inc(self, partial: np.ndarray) -> None:
        """把一个私有部分累加器加入 trc_burst_ge_inc"""
        self._merge(self.trc_burst_ge_inc, partial)

    # =========================================================================
    # 接收
    # =========================================================================

    def recv_attn_ge_inc(self) -> None:
        """attn_ge_inc → 接收层 attn_ge, 然后清零"""
        self._drain(self.attn_ge_inc, "attn_ge")

    def recv_trc_burst_ge_inc(self) -> None:
        """trc_burst_ge_inc → 接收层 trc_burst_ge, 然后清零"""
        self._drain(self.trc_burst_ge_inc, "trc_burst_ge")

    def recv_ctxt_ge_inc(self) -> None:
        """BURST_CTXT: trc_burst_ge_inc → 接收层 deep_ctxt_ge, 然后清零"""
        self._drain(self.trc_burst_ge_inc, "deep_ctxt_ge")

    def _drain(self, acc: np.ndarray, field: str) -> None:
        target = getattr(self._deep_recv(), field)
        if np.shape(target) != acc.shape:
            raise IndexViolation(
                f"投射 {self.name}: 接收层 {field} 形状 {np.shape(target)} "
                f"与累加器 {acc.shape} 不符")
        target += acc
        acc[:] = 0.0

    def _deep_recv(self) -> DeepReceiver:
        self._require_built()
        rlay = self.recv
        if not isinstance(rlay, DeepReceiver):
            raise ReceiverCapabilityError(
                f"投射 {self.name}: 接收层 {rlay.name!r} 不是 DeepReceiver")
        return rlay
