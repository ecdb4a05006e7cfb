"""
Prjn — 向量化基础投射 (突触存储 + 标准 Ge 通路)

一个 Prjn = 发送层 → 接收层的一束稀疏加权突触。

构造时给出边列表:
  pre_ids[K]:  发送单元索引
  post_ids[K]: 接收单元索引
省略时为全连接。

build() 把边列表转换为按发送者排序的压缩存储:
  scon_n[Ns]:      每个发送者的突触数
  scon_idx_st[Ns]: 每个发送者在扁平数组中的起始偏移
  scon_idx[K]:     每个突触的接收单元索引 (发送者主序)
  wt[K]:           突触权重 (同序)

发送者 si 的突触段 = [scon_idx_st[si], scon_idx_st[si] + scon_n[si])

Delta 发送 (标准 Ge):
  scaled = delta · ge_scale
  ge_inc[scon_idx[k]] += scaled · wt[k]     (对 si 的每个突触 k)

接收:
  recv.ge[i] += ge_inc[i];  ge_inc[i] = 0    (遍历全部接收单元)

累加使用 np.add.at, 同一发送者内重复的接收索引不会丢失贡献。
"""

import logging
from dataclasses import replace
from typing import Optional

import numpy as np

from deepleabra.core.layer import Layer
from deepleabra.core.params import (
    WtInitParams,
    WtScaleParams,
    DEFAULT_WT_INIT,
    DEFAULT_WT_SCALE,
    WT_DIST_GAUSSIAN,
)
from deepleabra.errors import BuildError, IndexViolation
from deepleabra.prjn_types import PrjnType

logger = logging.getLogger(__name__)


class Prjn:
    """基础投射 — 稀疏突触存储与标准 Ge delta 通路

    使用示例:
        pj = Prjn(send_lay, recv_lay, PrjnType.FORWARD,
                  pre_ids=np.array([0, 0, 1, 1]),
                  post_ids=np.array([0, 1, 1, 2]))
        pj.build()
        pj.init_weights(np.random.default_rng(0))

        # 每步:
        pj.send_ge_delta(si, delta)     # 扇出
        pj.recv_ge_inc()                # 屏障后扇入
    """

    def __init__(
        self,
        send: Layer,
        recv: Layer,
        prjn_type: PrjnType = PrjnType.FORWARD,
        pre_ids: Optional[np.ndarray] = None,
        post_ids: Optional[np.ndarray] = None,
        wt_init: Optional[WtInitParams] = None,
        wt_scale: Optional[WtScaleParams] = None,
        name: Optional[str] = None,
    ):
        """
        Args:
            send: 发送层
            recv: 接收层
            prjn_type: 投射类型标签 (构造后不可修改)
            pre_ids: int[K], 发送单元索引; None = 全连接
            post_ids: int[K], 接收单元索引; 必须与 pre_ids 同时给出
            wt_init: 初始权重分布
            wt_scale: 电导缩放参数
            name: 投射名称, 默认 "发送层To接收层"
        """
        self.send = send
        self.recv = recv
        self._prjn_type = PrjnType(prjn_type)
        self.name = name or f"{send.name}To{recv.name}"

        self._pre_ids = pre_ids
        self._post_ids = post_ids

        self.wt_init = replace(wt_init) if wt_init is not None else replace(DEFAULT_WT_INIT)
        self.wt_scale = replace(wt_scale) if wt_scale is not None else replace(DEFAULT_WT_SCALE)
        self.ge_scale = 1.0

        # === build() 之后才分配 ===
        self.scon_n: Optional[np.ndarray] = None
        self.scon_idx_st: Optional[np.ndarray] = None
        self.scon_idx: Optional[np.ndarray] = None
        self.wt: Optional[np.ndarray] = None
        self.rcon_n: Optional[np.ndarray] = None
        self.ge_inc: Optional[np.ndarray] = None
        self._syn_send: Optional[np.ndarray] = None   # 每个突触的发送者 (发送者主序)
        self._scon_cum: Optional[np.ndarray] = None   # 长度 Ns+1 的前缀和
        self._order: Optional[np.ndarray] = None      # 排序后位置 → 原始边序号
        self._built = False

    @property
    def prjn_type(self) -> PrjnType:
        """投射类型标签 (只读)"""
        return self._prjn_type

    @property
    def is_built(self) -> bool:
        return self._built

    @property
    def n_syn(self) -> int:
        return 0 if self.wt is None else len(self.wt)

    # =========================================================================
    # 参数
    # =========================================================================

    def defaults(self) -> None:
        """恢复预设参数"""
        self.wt_init = replace(DEFAULT_WT_INIT)
        self.wt_scale = replace(DEFAULT_WT_SCALE)

    def update_params(self) -> None:
        """参数修改后调用: 校验参数"""
        self.wt_init.validate()
        self.wt_scale.validate()

    # =========================================================================
    # 构建
    # =========================================================================

    def build(self) -> None:
        """建立压缩连接与权重存储

        必须在两端层都 build 之后调用, 且只能调用一次。

        Raises:
            BuildError: 重复 build / 层未 build / 边列表非法
        """
        if self._built:
            raise BuildError(f"投射 {self.name} 重复 build")
        if not (self.send.is_built and self.recv.is_built):
            raise BuildError(f"投射 {self.name}: 发送层和接收层必须先 build")

        ns = self.send.n
        nr = self.recv.n
        pre, post = self._edge_list(ns, nr)

        order = np.argsort(pre, kind="stable")
        scon_n = np.bincount(pre, minlength=ns).astype(np.int64)
        cum = np.zeros(ns + 1, dtype=np.int64)
        np.cumsum(scon_n, out=cum[1:])

        self._order = order
        self._syn_send = pre[order]
        self._scon_cum = cum
        self.scon_n = scon_n
        self.scon_idx_st = cum[:-1].copy()
        self.scon_idx = post[order]
        self.rcon_n = np.bincount(post, minlength=nr).astype(np.int64)
        self.wt = np.zeros(len(pre))
        self.ge_inc = np.zeros(nr)
        self._built = True

        logger.debug("build prjn %s type=%s ns=%d nr=%d n_syn=%d",
                     self.name, self._prjn_type.label, ns, nr, len(pre))

    def _edge_list(self, ns: int, nr: int):
        """校验并返回 (pre, post) int64 边列表"""
        if self._pre_ids is None and self._post_ids is None:
            pre = np.repeat(np.arange(ns, dtype=np.int64), nr)
            post = np.tile(np.arange(nr, dtype=np.int64), ns)
            return pre, post
        if self._pre_ids is None or self._post_ids is None:
            raise BuildError(f"投射 {self.name}: pre_ids 与 post_ids 必须同时给出")

        pre = np.asarray(self._pre_ids)
        post = np.asarray(self._post_ids)
        if pre.ndim != 1 or post.ndim != 1 or len(pre) != len(post):
            raise BuildError(
                f"投射 {self.name}: pre_ids/post_ids 必须是等长一维数组, "
                f"得到 {pre.shape} / {post.shape}")
        if len(pre) and not (np.issubdtype(pre.dtype, np.integer)
                             and np.issubdtype(post.dtype, np.integer)):
            raise BuildError(f"投射 {self.name}: 索引必须为整数")
        pre = pre.astype(np.int64)
        post = post.astype(np.int64)
        if len(pre):
            if pre.min() < 0 or pre.max() >= ns:
                raise BuildError(f"投射 {self.name}: 发送索引超出 [0, {ns})")
            if post.min() < 0 or post.max() >= nr:
                raise BuildError(f"投射 {self.name}: 接收索引超出 [0, {nr})")
        return pre, post

    # =========================================================================
    # 初始化
    # =========================================================================

    def init_weights(self, rng: Optional[np.random.Generator] = None) -> None:
        """按 wt_init 随机初始化权重 (裁剪到 [0, 1]), 然后清空累加器"""
        self._require_built()
        if rng is None:
            rng = np.random.default_rng()
        p = self.wt_init
        if p.dist == WT_DIST_GAUSSIAN:
            wts = p.mean + p.var * rng.standard_normal(self.n_syn)
        else:
            wts = p.mean + p.var * (2.0 * rng.random(self.n_syn) - 1.0)
        self.wt[:] = np.clip(wts, 0.0, 1.0)
        self.init_ge_inc()

    def init_ge_inc(self) -> None:
        """清空 Ge 累加器"""
        self._require_built()
        self.ge_inc[:] = 0.0

    def init_ge_scale(self, rel_sum: float) -> None:
        """由发送层活跃度与连接数计算 ge_scale

        Args:
            rel_sum: 接收层所有投射 wt_scale.rel 之和
        """
        self._require_built()
        ncon = float(self.rcon_n.mean()) if len(self.rcon_n) else 0.0
        full = self.wt_scale.full_scale(self.send.act_avg, float(self.send.n), ncon)
        self.ge_scale = full / rel_sum if rel_sum > 0 else full

    def set_edge_weights(self, wts) -> None:
        """按构造时的边顺序设置权重

        Args:
            wts: float[K], 与 pre_ids/post_ids 对齐
        """
        self._require_built()
        wts = np.asarray(wts, dtype=np.float64)
        if wts.shape != (self.n_syn,):
            raise IndexViolation(
                f"投射 {self.name}: 需要 {self.n_syn} 个权重, 得到 {wts.shape}")
        self.wt[:] = wts[self._order]

    def sender_synapses(self, si: int):
        """发送者 si 的 (接收索引, 权重) 视图"""
        self._check_sender(si)
        st = self.scon_idx_st[si]
        nc = self.scon_n[si]
        return self.scon_idx[st:st + nc], self.wt[st:st + nc]

    # =========================================================================
    # 发送 / 接收 (标准 Ge)
    # =========================================================================

    def send_ge_delta(self, si: int, delta: float, out: Optional[np.ndarray] = None) -> None:
        """把发送者 si 的 act delta 散射到 ge_inc (或 out)"""
        self._scatter(self.ge_inc, si, delta, out)

    def send_ge_deltas(self, deltas, out: Optional[np.ndarray] = None,
                       lo: int = 0, hi: Optional[int] = None) -> None:
        """批量发送: deltas[Ns] 中 [lo, hi) 段的发送者"""
        self._scatter_range(self.ge_inc, deltas, out, lo, hi)

    def merge_ge_inc(self, partial: np.ndarray) -> None:
        """把一个私有部分累加器加入 ge_inc"""
        self._merge(self.ge_inc, partial)

    def recv_ge_inc(self) -> None:
        """把 ge_inc 加到接收层 ge 上并清零"""
        self._require_built()
        self.recv.ge += self.ge_inc
        self.ge_inc[:] = 0.0

    # =========================================================================
    # 散射内核
    # =========================================================================

    def _require_built(self) -> None:
        if not self._built:
            raise IndexViolation(f"投射 {self.name} 尚未 build")

    def _check_sender(self, si: int) -> None:
        self._require_built()
        if not 0 <= si < self.send.n:
            raise IndexViolation(
                f"投射 {self.name}: 发送索引 {si} 超出 [0, {self.send.n})")

    def _target(self, acc: np.ndarray, out: Optional[np.ndarray]) -> np.ndarray:
        if out is None:
            return acc
        if out.shape != acc.shape:
            raise IndexViolation(
                f"投射 {self.name}: out 形状 {out.shape} 与累加器 {acc.shape} 不符")
        return out

    def _merge(self, acc: np.ndarray, partial: np.ndarray) -> None:
        self._require_built()
        if partial is None or np.shape(partial) != acc.shape:
            raise IndexViolation(
                f"投射 {self.name}: 部分累加器形状 {np.shape(partial)} "
                f"与累加器 {acc.shape} 不符")
        acc += partial

    def _scatter(self, acc: np.ndarray, si: int, delta: float,
                 out: Optional[np.ndarray]) -> None:
        self._check_sender(si)
        target = self._target(acc, out)
        scdel = delta * self.ge_scale
        st = self.scon_idx_st[si]
        nc = self.scon_n[si]
        np.add.at(target, self.scon_idx[st:st + nc], scdel * self.wt[st:st + nc])

    def _scatter_range(self, acc: np.ndarray, deltas, out: Optional[np.ndarray],
                       lo: int, hi: Optional[int]) -> None:
        self._require_built()
        target = self._target(acc, out)
        ns = self.send.n
        deltas = np.asarray(deltas, dtype=np.float64)
        if deltas.shape != (ns,):
            raise IndexViolation(
                f"投射 {self.name}: deltas 形状应为 ({ns},), 得到 {deltas.shape}")
        if hi is None:
            hi = ns
        if not 0 <= lo <= hi <= ns:
            raise IndexViolation(f"投射 {self.name}: 发送者区间 [{lo}, {hi}) 非法")

        a, b = self._scon_cum[lo], self._scon_cum[hi]
        if a == b:
            return
        scdel = deltas[self._syn_send[a:b]] * self.ge_scale
        np.add.at(target, self.scon_idx[a:b], scdel * self.wt[a:b])

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(name={self.name!r}, "
                f"type={self._prjn_type.label}, n_syn={self.n_syn})")
