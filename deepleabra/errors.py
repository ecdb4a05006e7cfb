"""
异常层级

DeepLeabraError (基类)
├── BuildError              — 拓扑无法建立 (形状/索引非法, 重复 build)
├── IndexViolation          — 调用契约违规 (发送者索引越界, build 前调用)
├── ReceiverCapabilityError — 接收层不提供深层电导字段
└── ConfigurationError      — 参数非法

IndexViolation 是编程错误而非可恢复的运行时状态:
立即抛出, 绝不钳位 (钳位会无声地污染仿真结果)。
本包是纯数值内核, 没有 I/O, 因此任何地方都不做重试。
"""


class DeepLeabraError(Exception):
    """本包所有自定义异常的基类"""


class BuildError(DeepLeabraError):
    """投射/层的 build 失败

    基础 build 失败时原样向上传播, 深层累加器不会被分配。
    """


class IndexViolation(DeepLeabraError, IndexError):
    """发送者索引越界, 或在 build() 之前调用 send/recv"""


class ReceiverCapabilityError(DeepLeabraError, TypeError):
    """接收层不满足 DeepReceiver 接口 (缺少 attn_ge / trc_burst_ge / deep_ctxt_ge)"""


class ConfigurationError(DeepLeabraError, ValueError):
    """参数值越界或相互矛盾"""
