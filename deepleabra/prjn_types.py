"""
Layer 0: 投射类型枚举

定义 DeepLeabra 系统中所有投射 (projection) 的角色标签:
- 基础角色: FORWARD / BACK / LATERAL / INHIB (标准 Ge 通路)
- 深层角色: BURST_CTXT / BURST_TRC / DEEP_ATTN (三条专用生物回路)

这是封闭的静态枚举, 不支持运行时注册。
标签在投射构造时确定, 之后不可修改。
调度代码 (deep/network.py) 根据标签决定:
  - 使用哪个累加器 (ge / attn / burst)
  - 以何种节律发送 (每周期 / burst 象限内 / burst 象限末)
"""

from enum import IntEnum


# 累加器名称
ACC_GE = "ge"
ACC_ATTN = "attn"
ACC_BURST = "burst"

# 发送节律
CADENCE_EVERY_CYCLE = "every_cycle"
CADENCE_BURST_QUARTER = "burst_quarter"
CADENCE_BURST_QUARTER_END = "burst_quarter_end"


class PrjnType(IntEnum):
    """投射类型枚举

    基础角色 (与 emer 的通用投射类型一致):
    - FORWARD: 前馈, 低层 → 高层
    - BACK:    反馈, 高层 → 低层
    - LATERAL: 同层侧向
    - INHIB:   抑制性

    深层角色:
    - BURST_CTXT: 浅层 → 同区深层。burst 象限结束时发送 DeepBurst,
                  驱动 DeepCtxtGe 上下文兴奋电导。
                  下游学习规则据此标签选择时延感知版本。
    - BURST_TRC:  浅层 → 丘脑中继 (TRC, 如 Pulvinar)。burst 象限内持续发送,
                  累积到 TRCBurstGe, 代表与先前预测比较的 "结果"。
    - DEEP_ATTN:  深层 (L6 CT) → 浅层。每步按标准 delta 机制发送,
                  聚合到 AttnGe, 调制浅层的增益与可学习性。

    | 角色        | 累加器 | 节律                 |
    |------------|--------|---------------------|
    | 基础四类    | ge     | every_cycle          |
    | BURST_CTXT | burst  | burst_quarter_end    |
    | BURST_TRC  | burst  | burst_quarter        |
    | DEEP_ATTN  | attn   | every_cycle          |
    """
    FORWARD = 0
    BACK = 1
    LATERAL = 2
    INHIB = 3
    BURST_CTXT = 4
    BURST_TRC = 5
    DEEP_ATTN = 6

    @property
    def is_deep(self) -> bool:
        """是否为三种深层专用角色之一"""
        return self in (PrjnType.BURST_CTXT,
                        PrjnType.BURST_TRC,
                        PrjnType.DEEP_ATTN)

    @property
    def accumulator(self) -> str:
        """该角色驱动的累加器: 'ge' / 'attn' / 'burst'"""
        if self == PrjnType.DEEP_ATTN:
            return ACC_ATTN
        if self in (PrjnType.BURST_CTXT, PrjnType.BURST_TRC):
            return ACC_BURST
        return ACC_GE

    @property
    def cadence(self) -> str:
        """该角色的发送节律"""
        if self == PrjnType.BURST_CTXT:
            return CADENCE_BURST_QUARTER_END
        if self == PrjnType.BURST_TRC:
            return CADENCE_BURST_QUARTER
        return CADENCE_EVERY_CYCLE

    @property
    def label(self) -> str:
        """DeepLeabra 文献中的名称 (BurstCtxt / BurstTRC / DeepAttn)"""
        return _LABELS[self]


_LABELS = {
    PrjnType.FORWARD: "Forward",
    PrjnType.BACK: "Back",
    PrjnType.LATERAL: "Lateral",
    PrjnType.INHIB: "Inhib",
    PrjnType.BURST_CTXT: "BurstCtxt",
    PrjnType.BURST_TRC: "BurstTRC",
    PrjnType.DEEP_ATTN: "DeepAttn",
}
