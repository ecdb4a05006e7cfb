"""
DeepNetwork — 扇出/屏障/扇入调度器

一个网络 = 若干 Layer/DeepLayer + 若干 DeepPrjn。

每个周期 (cycle) 的执行顺序:
1. DeepLayer 由 act 计算 deep_burst
2. 计算 delta: act - act_sent, deep_burst - deep_burst_sent (仅 burst 象限)
3. 扇出: 按投射类型选择累加器与节律
     基础四类    → send_ge_deltas           (每周期, act delta)
     DEEP_ATTN   → send_attn_ge_deltas      (每周期, act delta)
     BURST_TRC   → send_trc_burst_ge_deltas (仅 burst 象限, burst delta)
     BURST_CTXT  → 周期内不发送 (见 quarter_final)
4. 屏障: 所有扇出任务完成, 部分累加器按固定顺序合并
5. 扇入: recv_ge_inc / recv_attn_ge_inc / recv_trc_burst_ge_inc (单线程)

并发 (n_workers > 1):
  每个投射的发送者按连续区间切成 n_workers 块,
  每块在线程池中散射到自己的零缓冲 (out=...),
  屏障后按 (投射, 块) 顺序合并进投射的累加器。
  不同块写不同缓冲, 扇出阶段没有共享可写状态。

quarter_final (仅 burst 象限末):
  清空 BURST_CTXT 接收层的 deep_ctxt_ge,
  发送每个发送者的完整 deep_burst (不是 delta), 扇入到 deep_ctxt_ge,
  然后清空 deep_burst / deep_burst_sent 与 BURST_TRC 接收层的 trc_burst_ge,
  下一个 burst 象限从零开始。
"""

import logging
import weakref
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import replace
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from deepleabra.core.layer import Layer
from deepleabra.core.params import DeepParams, DEFAULT_DEEP
from deepleabra.deep.layer import DeepLayer
from deepleabra.deep.prjn import DeepPrjn
from deepleabra.errors import BuildError, ConfigurationError
from deepleabra.prjn_types import PrjnType, ACC_GE, ACC_ATTN, ACC_BURST

logger = logging.getLogger(__name__)

# 扇入时写入 deep_ctxt_ge 的累加器标记
ACC_CTXT = "ctxt"

LayerRef = Union[str, Layer]
SendJob = Tuple[DeepPrjn, str, np.ndarray]


class DeepNetwork:
    """DeepLeabra 网络调度器

    使用示例:
        net = DeepNetwork("Pred", n_workers=4)
        v1 = net.add_layer(DeepLayer("V1", (5, 5)))
        pulv = net.add_layer(DeepLayer("Pulv", (5, 5)))
        v1d = net.add_layer(DeepLayer("V1D", (5, 5)))
        net.connect(v1, pulv, PrjnType.BURST_TRC)
        net.connect(v1, v1d, PrjnType.BURST_CTXT)
        net.connect(v1d, v1, PrjnType.DEEP_ATTN)
        net.build()
        net.init_weights(seed=1)

        for qtr in range(4):
            for _ in range(25):
                v1.apply_ext(stim)
                net.cycle(qtr)
            net.quarter_final(qtr)
    """

    def __init__(
        self,
        name: str = "Net",
        n_workers: int = 1,
        deep: Optional[DeepParams] = None,
    ):
        if n_workers < 1:
            raise ConfigurationError(f"n_workers 必须 >= 1, 得到 {n_workers}")
        self.name = name
        self.n_workers = n_workers
        self.deep = replace(deep) if deep is not None else replace(DEFAULT_DEEP)

        self.layers: Dict[str, Layer] = {}
        self.prjns: List[DeepPrjn] = []

        self.cycle_count = 0
        # 累计送达的电导总量 (守恒检查用)
        self.stats: Dict[str, float] = {
            ACC_GE: 0.0, ACC_ATTN: 0.0, ACC_BURST: 0.0, ACC_CTXT: 0.0,
        }

        self._executor: Optional[ThreadPoolExecutor] = None
        self._built = False

    # =========================================================================
    # 拓扑
    # =========================================================================

    def add_layer(self, layer: Layer) -> Layer:
        if layer.name in self.layers:
            raise BuildError(f"网络 {self.name}: 层名重复 {layer.name!r}")
        self.layers[layer.name] = layer
        return layer

    def layer(self, name: str) -> Layer:
        return self.layers[name]

    def connect(
        self,
        send: LayerRef,
        recv: LayerRef,
        prjn_type: PrjnType = PrjnType.FORWARD,
        pre_ids: Optional[np.ndarray] = None,
        post_ids: Optional[np.ndarray] = None,
        **kwargs,
    ) -> DeepPrjn:
        """创建投射并登记到两端层

        Args:
            send, recv: 层对象或层名
            prjn_type: 投射类型
            pre_ids, post_ids: 边列表 (None = 全连接)
            **kwargs: 透传给 DeepPrjn (wt_init, wt_scale, name)
        """
        if self._built:
            raise BuildError(f"网络 {self.name} 已 build, 不能再添加投射")
        slay = self._resolve(send)
        rlay = self._resolve(recv)
        pj = DeepPrjn(slay, rlay, prjn_type, pre_ids=pre_ids, post_ids=post_ids, **kwargs)
        slay.send_prjns.append(pj)
        rlay.recv_prjns.append(pj)
        self.prjns.append(pj)
        return pj

    def _resolve(self, ref: LayerRef) -> Layer:
        if isinstance(ref, Layer):
            if self.layers.get(ref.name) is not ref:
                raise BuildError(f"网络 {self.name}: 层 {ref.name!r} 未加入网络")
            return ref
        if ref not in self.layers:
            raise BuildError(f"网络 {self.name}: 未知层 {ref!r}")
        return self.layers[ref]

    # =========================================================================
    # 构建与初始化
    # =========================================================================

    def build(self) -> None:
        """build 所有层与投射, 计算 ge_scale, 必要时启动线程池"""
        if self._built:
            raise BuildError(f"网络 {self.name} 重复 build")

        # 先校验全部拓扑与参数, 任何层或投射都还没有分配
        for pj in self.prjns:
            if pj.prjn_type.is_deep and not isinstance(pj.recv, DeepLayer):
                raise BuildError(
                    f"投射 {pj.name}: {pj.prjn_type.label} 的接收层必须是 DeepLayer")
            if pj.prjn_type.accumulator == ACC_BURST and not isinstance(pj.send, DeepLayer):
                raise BuildError(
                    f"投射 {pj.name}: {pj.prjn_type.label} 的发送层必须是 DeepLayer")
            pj.update_params()

        # 上次 build 中途失败时, 已完成的部分直接沿用
        for lay in self.layers.values():
            if not lay.is_built:
                lay.build()
        for pj in self.prjns:
            if not pj.is_built:
                pj.build()
        for lay in self.layers.values():
            lay.init_ge_scales()
        if self.n_workers > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=self.n_workers, thread_name_prefix=f"{self.name}-send")
            # 未调用 close() 的网络被回收时也关闭线程池
            weakref.finalize(self, self._executor.shutdown, wait=False)
        self._built = True
        logger.info("build network %s: %d layers, %d prjns, %d workers",
                    self.name, len(self.layers), len(self.prjns), self.n_workers)

    def init_weights(self, seed: Optional[int] = None) -> None:
        """随机初始化所有权重, 重置状态与累加器"""
        rng = np.random.default_rng(seed)
        for pj in self.prjns:
            pj.init_weights(rng)
        self.init_acts()

    def init_acts(self) -> None:
        for lay in self.layers.values():
            lay.init_acts()
        for pj in self.prjns:
            pj.init_ge_inc()
        self.cycle_count = 0
        for k in self.stats:
            self.stats[k] = 0.0

    def close(self) -> None:
        """关闭线程池"""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    # =========================================================================
    # 仿真步进
    # =========================================================================

    def cycle(self, quarter: int) -> None:
        """推进一个周期: 扇出 → 屏障 → 扇入

        Args:
            quarter: 当前象限 (0 ~ 3)
        """
        in_burst = self.deep.is_burst_qtr(quarter)
        deep_layers = [lay for lay in self.layers.values() if isinstance(lay, DeepLayer)]

        for lay in deep_layers:
            lay.burst_fm_act(in_burst, self.deep.burst_thr)

        act_deltas = {name: lay.compute_send_deltas() for name, lay in self.layers.items()}
        burst_deltas = {}
        if in_burst:
            burst_deltas = {lay.name: lay.compute_burst_deltas() for lay in deep_layers}

        jobs: List[SendJob] = []
        for pj in self.prjns:
            ptyp = pj.prjn_type
            if ptyp == PrjnType.BURST_CTXT:
                continue
            if ptyp == PrjnType.BURST_TRC:
                if in_burst:
                    jobs.append((pj, ACC_BURST, burst_deltas[pj.send.name]))
                continue
            jobs.append((pj, ptyp.accumulator, act_deltas[pj.send.name]))

        self._fan_out(jobs)
        self._fan_in(jobs)
        self.cycle_count += 1
        logger.debug("cycle %d qtr=%d burst=%s jobs=%d",
                     self.cycle_count, quarter, in_burst, len(jobs))

    def quarter_final(self, quarter: int) -> None:
        """象限结束: burst 象限末发送 BURST_CTXT 并重置 burst 状态"""
        if not self.deep.is_burst_qtr(quarter):
            return

        ctxt = [pj for pj in self.prjns if pj.prjn_type == PrjnType.BURST_CTXT]
        for pj in ctxt:
            pj.recv.deep_ctxt_ge[:] = 0.0
        jobs = [(pj, ACC_CTXT, pj.send.deep_burst.copy()) for pj in ctxt]
        self._fan_out(jobs)
        self._fan_in(jobs)

        for lay in self.layers.values():
            if isinstance(lay, DeepLayer):
                lay.deep_burst[:] = 0.0
                lay.deep_burst_sent[:] = 0.0
        for pj in self.prjns:
            if pj.prjn_type == PrjnType.BURST_TRC:
                pj.recv.trc_burst_ge[:] = 0.0
        logger.debug("quarter_final qtr=%d ctxt prjns=%d", quarter, len(ctxt))

    # =========================================================================
    # 扇出 / 扇入
    # =========================================================================

    def _fan_out(self, jobs: List[SendJob]) -> None:
        """执行所有发送; 返回时所有贡献已进入投射累加器 (屏障)

        任何发送失败时, 本批任务涉及的累加器被清零后再抛出,
        不会有半个周期的贡献留到下一个周期。
        """
        try:
            if self._executor is None:
                for pj, acc, deltas in jobs:
                    _send_fn(pj, acc)(deltas)
                return

            futures = []
            for pj, acc, deltas in jobs:
                for lo, hi in _chunks(pj.send.n, self.n_workers):
                    futures.append((pj, acc, self._executor.submit(
                        _send_partial, pj, acc, deltas, lo, hi)))

            # 屏障: 先等全部结果, 再按提交顺序合并, 合并顺序与线程调度无关
            wait([fut for _, _, fut in futures])
            partials = [(pj, acc, fut.result()) for pj, acc, fut in futures]
            for pj, acc, buf in partials:
                _merge_fn(pj, acc)(buf)
        except Exception:
            logger.error("fan-out failed in %s, clearing %d accumulators",
                         self.name, len(jobs))
            for pj, acc, _ in jobs:
                _acc_array(pj, acc)[:] = 0.0
            raise

    def _fan_in(self, jobs: List[SendJob]) -> None:
        for pj, acc, _ in jobs:
            if acc == ACC_GE:
                self.stats[ACC_GE] += float(pj.ge_inc.sum())
                pj.recv_ge_inc()
            elif acc == ACC_ATTN:
                self.stats[ACC_ATTN] += float(pj.attn_ge_inc.sum())
                pj.recv_attn_ge_inc()
            elif acc == ACC_BURST:
                self.stats[ACC_BURST] += float(pj.trc_burst_ge_inc.sum())
                pj.recv_trc_burst_ge_inc()
            else:
                self.stats[ACC_CTXT] += float(pj.trc_burst_ge_inc.sum())
                pj.recv_ctxt_ge_inc()

    def __repr__(self) -> str:
        return (f"DeepNetwork(name={self.name!r}, layers={len(self.layers)}, "
                f"prjns={len(self.prjns)}, workers={self.n_workers})")


def _send_fn(pj: DeepPrjn, acc: str):
    if acc == ACC_GE:
        return pj.send_ge_deltas
    if acc == ACC_ATTN:
        return pj.send_attn_ge_deltas
    return pj.send_trc_burst_ge_deltas


def _merge_fn(pj: DeepPrjn, acc: str):
    if acc == ACC_GE:
        return pj.merge_ge_inc
    if acc == ACC_ATTN:
        return pj.merge_attn_ge_inc
    return pj.merge_trc_burst_ge_inc


def _acc_array(pj: DeepPrjn, acc: str) -> np.ndarray:
    if acc == ACC_GE:
        return pj.ge_inc
    if acc == ACC_ATTN:
        return pj.attn_ge_inc
    return pj.trc_burst_ge_inc


def _send_partial(pj: DeepPrjn, acc: str, deltas: np.ndarray, lo: int, hi: int) -> np.ndarray:
    """线程池任务: 发送者 [lo, hi) 散射到私有缓冲"""
    buf = np.zeros(pj.recv.n)
    _send_fn(pj, acc)(deltas, out=buf, lo=lo, hi=hi)
    return buf


def _chunks(n: int, k: int) -> List[Tuple[int, int]]:
    """把 [0, n) 切成至多 k 个连续非空区间"""
    if n == 0:
        return []
    bounds = np.linspace(0, n, min(k, n) + 1).astype(int)
    return [(int(a), int(b)) for a, b in zip(bounds[:-1], bounds[1:]) if b > a]
