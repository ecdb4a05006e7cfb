"""
Layer — 速率编码神经元层 (向量化)

所有单元状态存储为 numpy 数组, 一个 Layer 对象代表一整层。

本模块只负责:
  - 形状与单元数 (供投射分配累加器)
  - act / act_sent 与 delta 发送判定
  - 基础兴奋电导 ge (由投射的 recv_ge_inc 写入)
  - 为接收投射计算 ge_scale

激活动力学不在此处: act 由调用方通过 apply_ext 设置。

delta 发送判定 (向量化):
  act > thr_send 且 |act - act_sent| > thr_delta → 发送 delta, act_sent = act
  act <= thr_send 且 act_sent > thr_send        → 发送 -act_sent, act_sent = 0
"""

import logging
from dataclasses import replace
from typing import List, Optional, Sequence

import numpy as np

from deepleabra.core.params import LayerParams, DEFAULT_LAYER
from deepleabra.errors import BuildError, IndexViolation

logger = logging.getLogger(__name__)


class Layer:
    """速率编码神经元层

    使用示例:
        lay = Layer("V1", (4, 5))
        lay.build()
        lay.apply_ext(np.linspace(0, 1, lay.n))
        deltas = lay.compute_send_deltas()

    Attributes:
        name: 层名称
        shape: 单元形状 (例如 (4, 5) = 20 个单元)
        params: LayerParams
        act: float[N], 当前活跃度
        act_sent: float[N], 上次发送时的活跃度
        ge: float[N], 基础兴奋电导
        act_avg: 平均活跃度 (用于 ge_scale)
        send_prjns / recv_prjns: 以本层为发送/接收端的投射
    """

    def __init__(self, name: str, shape: Sequence[int], params: Optional[LayerParams] = None):
        self.name = name
        self.shape = tuple(shape)
        self.params = replace(params) if params is not None else replace(DEFAULT_LAYER)
        self.act_avg = self.params.act_avg_init

        self.send_prjns: List = []
        self.recv_prjns: List = []

        # build() 之后才分配
        self.act: Optional[np.ndarray] = None
        self.act_sent: Optional[np.ndarray] = None
        self.ge: Optional[np.ndarray] = None

    # =========================================================================
    # 构建
    # =========================================================================

    @property
    def n(self) -> int:
        """单元总数 (形状各维之积)"""
        return int(np.prod(self.shape, dtype=np.int64)) if self.shape else 0

    @property
    def is_built(self) -> bool:
        return self.act is not None

    def build(self) -> None:
        """校验形状并分配状态数组

        Raises:
            BuildError: 形状为空, 或含负数/非整数维度
        """
        if not self.shape:
            raise BuildError(f"层 {self.name!r} 形状为空")
        for d in self.shape:
            if not isinstance(d, (int, np.integer)) or d < 0:
                raise BuildError(f"层 {self.name!r} 形状非法: {self.shape}")
        n = self.n
        self._alloc(n)
        logger.debug("build layer %s shape=%s n=%d", self.name, self.shape, n)

    def _alloc(self, n: int) -> None:
        self.act = np.zeros(n)
        self.act_sent = np.zeros(n)
        self.ge = np.zeros(n)

    def init_acts(self) -> None:
        """重置所有动态状态 (保留参数和连接)"""
        self._require_built()
        self.act[:] = 0.0
        self.act_sent[:] = 0.0
        self.ge[:] = 0.0
        self.act_avg = self.params.act_avg_init

    def _require_built(self) -> None:
        if not self.is_built:
            raise IndexViolation(f"层 {self.name!r} 尚未 build")

    # =========================================================================
    # 输入
    # =========================================================================

    def apply_ext(self, values) -> None:
        """直接设置活跃度 (外部输入 / 钳位)

        Args:
            values: 长度 N 的数组, 或可 reshape 为 N 的数组, 或标量
        """
        self._require_built()
        vals = np.asarray(values, dtype=np.float64)
        if vals.ndim == 0:
            self.act[:] = float(vals)
            return
        if vals.size != self.n:
            raise IndexViolation(
                f"层 {self.name!r} 需要 {self.n} 个值, 得到 {vals.size}")
        self.act[:] = vals.reshape(-1)

    # =========================================================================
    # delta 发送判定
    # =========================================================================

    def compute_send_deltas(self) -> np.ndarray:
        """计算本步要发送的 act delta 并更新 act_sent

        Returns:
            float[N], 不发送的单元为 0
        """
        self._require_built()
        return compute_deltas(self.act, self.act_sent,
                              self.params.opt_thresh_send,
                              self.params.opt_thresh_delta)

    # =========================================================================
    # 电导缩放
    # =========================================================================

    def init_ge_scales(self) -> None:
        """为所有接收投射计算 ge_scale (按 Σrel 归一化)"""
        rel_sum = sum(pj.wt_scale.rel for pj in self.recv_prjns)
        for pj in self.recv_prjns:
            pj.init_ge_scale(rel_sum)

    def __repr__(self) -> str:
        return f"Layer(name={self.name!r}, shape={self.shape}, n={self.n})"


def compute_deltas(
    act: np.ndarray,
    sent: np.ndarray,
    thr_send: float,
    thr_delta: float,
) -> np.ndarray:
    """act/sent 对的向量化 delta 判定, 原地更新 sent"""
    deltas = np.zeros_like(act)

    on = act > thr_send
    diff = act - sent
    fire = on & (np.abs(diff) > thr_delta)
    deltas[fire] = diff[fire]
    sent[fire] = act[fire]

    # 从活跃掉到阈值以下: 撤回上次发送的全部量
    off = (~on) & (sent > thr_send)
    deltas[off] = -sent[off]
    sent[off] = 0.0

    return deltas
