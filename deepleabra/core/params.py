"""
参数数据类与预定义参数集

dataclass 作为纯参数容器, 模块级常量作为预设。

电导缩放 (WtScaleParams):
  ge_scale = abs · (rel / Σrel) · sl_act_scale(savg, snu, ncon)

  sl_act_scale 按发送层预期活跃单元数归一化, 使得不同大小/稀疏度的
  发送层对接收单元贡献的电导量级相当:
    slay_act_n = max(round(savg · snu), 1)
    若全连接 (ncon == snu): 1 / slay_act_n
    否则:
      max_act_n = min(ncon, slay_act_n)
      avg_act_n = max(round(savg · ncon), 1)
      exp_act_n = min(avg_act_n + sem_extra, max_act_n)
      1 / exp_act_n
"""

from dataclasses import dataclass
from typing import Tuple

from deepleabra.errors import ConfigurationError


WT_DIST_UNIFORM = "uniform"
WT_DIST_GAUSSIAN = "gaussian"


@dataclass
class WtInitParams:
    """初始权重分布

    Attributes:
        mean: 均值
        var:  uniform 时为半宽, gaussian 时为标准差
        dist: 'uniform' 或 'gaussian'
        sym:  是否与反向投射对称 (由网络连线代码使用)
    """
    mean: float = 0.5
    var: float = 0.25
    dist: str = WT_DIST_UNIFORM
    sym: bool = True

    def validate(self) -> None:
        if self.var < 0:
            raise ConfigurationError(f"WtInitParams.var 必须 >= 0, 得到 {self.var}")
        if self.dist not in (WT_DIST_UNIFORM, WT_DIST_GAUSSIAN):
            raise ConfigurationError(f"未知权重分布: {self.dist!r}")


@dataclass
class WtScaleParams:
    """投射电导缩放参数

    Attributes:
        abs: 绝对缩放, 直接乘到 ge_scale 上
        rel: 相对缩放, 按接收层所有投射的 rel 之和归一化
    """
    abs: float = 1.0
    rel: float = 1.0

    # 稀疏连接时预期活跃数的额外余量 (标准误)
    SEM_EXTRA = 2

    def validate(self) -> None:
        if self.abs < 0:
            raise ConfigurationError(f"WtScaleParams.abs 必须 >= 0, 得到 {self.abs}")
        if self.rel < 0:
            raise ConfigurationError(f"WtScaleParams.rel 必须 >= 0, 得到 {self.rel}")

    def sl_act_scale(self, savg: float, snu: float, ncon: float) -> float:
        """发送层活跃度缩放因子

        Args:
            savg: 发送层平均活跃度 (0~1)
            snu:  发送层单元数
            ncon: 每个接收单元的连接数
        """
        ncon = max(ncon, 1.0)
        slay_act_n = max(int(round(savg * snu)), 1)
        if ncon == snu:
            return 1.0 / slay_act_n
        max_act_n = max(int(min(ncon, slay_act_n)), 1)
        avg_act_n = max(int(round(savg * ncon)), 1)
        exp_act_n = min(avg_act_n + self.SEM_EXTRA, max_act_n)
        return 1.0 / exp_act_n

    def full_scale(self, savg: float, snu: float, ncon: float) -> float:
        """abs · rel · sl_act_scale (尚未按 Σrel 归一化)"""
        return self.abs * self.rel * self.sl_act_scale(savg, snu, ncon)


@dataclass
class LayerParams:
    """层级参数

    Attributes:
        act_avg_init: 平均活跃度初值, 用于 ge_scale 计算
        opt_thresh_send: 低于此活跃度不发送
        opt_thresh_delta: |delta| 低于此值不发送
    """
    act_avg_init: float = 0.15
    opt_thresh_send: float = 0.1
    opt_thresh_delta: float = 0.005


@dataclass
class DeepParams:
    """DeepLeabra 节律参数

    Attributes:
        on: 是否启用深层计算
        burst_qtr: 属于 burst 象限的象限编号 (0~3)
        burst_thr: act 超过此阈值才产生 DeepBurst
    """
    on: bool = True
    burst_qtr: Tuple[int, ...] = (1, 3)
    burst_thr: float = 0.1

    def is_burst_qtr(self, quarter: int) -> bool:
        return self.on and quarter in self.burst_qtr


# 预定义参数集
DEFAULT_WT_INIT = WtInitParams()
DEFAULT_WT_SCALE = WtScaleParams()
DEFAULT_LAYER = LayerParams()
DEFAULT_DEEP = DeepParams()
