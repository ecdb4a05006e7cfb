"""
DeepNetwork 扇出/屏障/扇入验证测试

Case 1: 节律 — 非 burst 象限 BURST_TRC 不发送, DEEP_ATTN 每周期发送
Case 2: 守恒 — 一个周期后接收层电导增量 == Σ delta · scale · wt
Case 3: burst 象限: TRC 收到 burst; quarter_final 把完整 deep_burst 送到 deep_ctxt_ge
Case 4: 并行 (n_workers=4) 与串行结果一致, 多发送者共享接收单元不丢贡献
Case 5: 拓扑校验 — 深层投射的接收/发送层类型
Case 6: 扇出失败时累加器被清空, 不留到下一个周期
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np
import pytest

from deepleabra.core.layer import Layer
from deepleabra.core.params import DeepParams
from deepleabra.deep.layer import DeepLayer
from deepleabra.deep.network import DeepNetwork
from deepleabra.errors import BuildError, ConfigurationError, IndexViolation
from deepleabra.prjn_types import PrjnType


def print_header(title: str):
    print(f"\n{'=' * 60}")
    print(f"  {title}")
    print(f"{'=' * 60}")


def dense_weights(pj) -> np.ndarray:
    """[Ns, Nr] 稠密权重 (重复边求和)"""
    W = np.zeros((pj.send.n, pj.recv.n))
    for si in range(pj.send.n):
        ris, wts = pj.sender_synapses(si)
        np.add.at(W[si], ris, wts)
    return W


def make_net(n_workers=1, seed=7, n=6):
    """Input → Super (FORWARD), Super → Pulv (BURST_TRC),
    Super → Deep (BURST_CTXT), Deep → Super (DEEP_ATTN)"""
    net = DeepNetwork("Pred", n_workers=n_workers)
    net.add_layer(Layer("Input", (n,)))
    net.add_layer(DeepLayer("Super", (n,)))
    net.add_layer(DeepLayer("Pulv", (n,)))
    net.add_layer(DeepLayer("Deep", (n,)))
    net.connect("Input", "Super", PrjnType.FORWARD)
    net.connect("Super", "Pulv", PrjnType.BURST_TRC)
    net.connect("Super", "Deep", PrjnType.BURST_CTXT)
    net.connect("Deep", "Super", PrjnType.DEEP_ATTN)
    net.build()
    net.init_weights(seed=seed)
    return net


def prjn_of(net, ptyp):
    return next(pj for pj in net.prjns if pj.prjn_type == ptyp)


# =============================================================================
# Case 1: 节律
# =============================================================================

def test_case_1_cadence():
    print_header("Case 1: 节律")

    net = make_net()
    sup, pulv, deep = net.layer("Super"), net.layer("Pulv"), net.layer("Deep")

    net.layer("Input").apply_ext(0.6)
    sup.apply_ext(0.8)
    deep.apply_ext(0.4)
    net.cycle(quarter=0)

    print(f"  Super ge={sup.ge.round(3)}, attn_ge={sup.attn_ge.round(3)}")
    print(f"  Pulv trc_burst_ge={pulv.trc_burst_ge}")
    assert np.all(sup.ge > 0), "FORWARD 每周期发送"
    assert np.all(sup.attn_ge > 0), "DEEP_ATTN 每周期发送"
    assert np.all(pulv.trc_burst_ge == 0), "非 burst 象限 BURST_TRC 不发送"
    assert np.all(sup.deep_burst == 0)
    assert np.all(deep.deep_ctxt_ge == 0)

    # 非 burst 象限的 quarter_final 什么也不做
    net.quarter_final(0)
    assert np.all(deep.deep_ctxt_ge == 0)

    # 所有投射累加器在周期结束时为 0
    for pj in net.prjns:
        assert np.all(pj.ge_inc == 0)
        assert np.all(pj.attn_ge_inc == 0)
        assert np.all(pj.trc_burst_ge_inc == 0)
    assert net.cycle_count == 1


# =============================================================================
# Case 2: 守恒
# =============================================================================

def test_case_2_conservation():
    print_header("Case 2: 守恒")

    net = make_net()
    inp, sup, deep = net.layer("Input"), net.layer("Super"), net.layer("Deep")
    rng = np.random.default_rng(2)
    acts_in = rng.uniform(0.2, 1.0, inp.n)
    acts_deep = rng.uniform(0.2, 1.0, deep.n)

    inp.apply_ext(acts_in)
    deep.apply_ext(acts_deep)
    net.cycle(quarter=0)

    fwd = prjn_of(net, PrjnType.FORWARD)
    attn = prjn_of(net, PrjnType.DEEP_ATTN)
    exp_ge = (acts_in * fwd.ge_scale) @ dense_weights(fwd)
    exp_attn = (acts_deep * attn.ge_scale) @ dense_weights(attn)

    np.testing.assert_allclose(sup.ge, exp_ge, rtol=1e-12)
    np.testing.assert_allclose(sup.attn_ge, exp_attn, rtol=1e-12)
    assert net.stats["ge"] == pytest.approx(exp_ge.sum())
    assert net.stats["attn"] == pytest.approx(exp_attn.sum())

    # 第二个周期: 只发送变化量, 总量仍等于当前 act 驱动的电导
    acts_in2 = acts_in.copy()
    acts_in2[:3] += 0.1
    inp.apply_ext(acts_in2)
    net.cycle(quarter=0)
    np.testing.assert_allclose(sup.ge, (acts_in2 * fwd.ge_scale) @ dense_weights(fwd),
                               rtol=1e-12)
    print(f"  ✓ ge 总量 {sup.ge.sum():.4f}, attn 总量 {sup.attn_ge.sum():.4f}")


# =============================================================================
# Case 3: burst 象限与 quarter_final
# =============================================================================

def test_case_3_burst_quarter_and_ctxt():
    print_header("Case 3: burst 象限")

    net = make_net()
    sup, pulv, deep = net.layer("Super"), net.layer("Pulv"), net.layer("Deep")
    trc = prjn_of(net, PrjnType.BURST_TRC)
    ctxt = prjn_of(net, PrjnType.BURST_CTXT)

    acts = np.array([0.5, 0.6, 0.05, 0.7, 0.0, 0.9])
    sup.apply_ext(acts)
    net.cycle(quarter=1)

    burst = np.where(acts > net.deep.burst_thr, acts, 0.0)
    np.testing.assert_allclose(sup.deep_burst, burst)
    exp_trc = (burst * trc.ge_scale) @ dense_weights(trc)
    np.testing.assert_allclose(pulv.trc_burst_ge, exp_trc, rtol=1e-12)
    # BURST_CTXT 周期内不发送
    assert np.all(deep.deep_ctxt_ge == 0)
    assert np.all(ctxt.trc_burst_ge_inc == 0)

    # 象限内再跑一个周期, act 不变 → TRC 不再增加
    net.cycle(quarter=1)
    np.testing.assert_allclose(pulv.trc_burst_ge, exp_trc, rtol=1e-12)

    net.quarter_final(1)
    exp_ctxt = (burst * ctxt.ge_scale) @ dense_weights(ctxt)
    print(f"  deep_ctxt_ge = {deep.deep_ctxt_ge.round(4)}")
    np.testing.assert_allclose(deep.deep_ctxt_ge, exp_ctxt, rtol=1e-12)
    assert net.stats["ctxt"] == pytest.approx(exp_ctxt.sum())

    # burst 状态为下一个 burst 象限清空
    assert np.all(sup.deep_burst == 0)
    assert np.all(sup.deep_burst_sent == 0)
    assert np.all(pulv.trc_burst_ge == 0)
    assert np.all(ctxt.trc_burst_ge_inc == 0)

    # 第二次 quarter_final: 上下文被替换而不是累加
    sup.apply_ext(acts)
    net.cycle(quarter=3)
    net.quarter_final(3)
    np.testing.assert_allclose(deep.deep_ctxt_ge, exp_ctxt, rtol=1e-12)


# =============================================================================
# Case 4: 并行 == 串行
# =============================================================================

def run_random_trial(n_workers: int) -> dict:
    net = DeepNetwork("Par", n_workers=n_workers, deep=DeepParams(burst_qtr=(1, 3)))
    net.add_layer(Layer("Input", (37,)))
    net.add_layer(DeepLayer("Super", (41,)))
    net.add_layer(DeepLayer("Pulv", (23,)))
    net.add_layer(DeepLayer("Deep", (41,)))

    topo = np.random.default_rng(11)
    pre = topo.integers(0, 41, size=400)
    post = topo.integers(0, 23, size=400)   # 许多发送者共享接收单元, 含重复边
    net.connect("Input", "Super", PrjnType.FORWARD)
    net.connect("Super", "Pulv", PrjnType.BURST_TRC, pre_ids=pre, post_ids=post)
    net.connect("Super", "Deep", PrjnType.BURST_CTXT)
    net.connect("Deep", "Super", PrjnType.DEEP_ATTN)
    net.connect("Super", "Super", PrjnType.LATERAL)

    with net:
        net.build()
        net.init_weights(seed=3)
        stim = np.random.default_rng(5)
        ctxt_trace = []
        for qtr in range(4):
            for _ in range(5):
                for name in ("Input", "Super", "Deep"):
                    lay = net.layer(name)
                    lay.apply_ext(stim.uniform(0.0, 1.0, lay.n))
                net.cycle(qtr)
                if qtr in (1, 3):
                    pulv_mid = net.layer("Pulv").trc_burst_ge.copy()
            net.quarter_final(qtr)
            ctxt_trace.append(net.layer("Deep").deep_ctxt_ge.copy())

        return {
            "super_ge": net.layer("Super").ge.copy(),
            "super_attn": net.layer("Super").attn_ge.copy(),
            "pulv_mid": pulv_mid,
            "ctxt": np.concatenate(ctxt_trace),
            "stats": dict(net.stats),
        }


def test_case_4_parallel_matches_serial():
    print_header("Case 4: 并行 == 串行")

    serial = run_random_trial(n_workers=1)
    parallel = run_random_trial(n_workers=4)

    for key in ("super_ge", "super_attn", "pulv_mid", "ctxt"):
        np.testing.assert_allclose(parallel[key], serial[key], rtol=1e-9, atol=1e-12)
        print(f"  {key}: max |Δ| = {np.abs(parallel[key] - serial[key]).max():.2e}")
    for k, v in serial["stats"].items():
        assert parallel["stats"][k] == pytest.approx(v, rel=1e-9, abs=1e-12)
    assert np.any(serial["pulv_mid"] != 0)
    assert np.any(serial["ctxt"] != 0)


# =============================================================================
# Case 5: 拓扑校验
# =============================================================================

def test_case_5_topology_validation():
    print_header("Case 5: 拓扑校验")

    with pytest.raises(ConfigurationError):
        DeepNetwork(n_workers=0)

    net = DeepNetwork()
    net.add_layer(Layer("Plain", (3,)))
    net.add_layer(DeepLayer("Super", (3,)))
    with pytest.raises(BuildError):
        net.add_layer(Layer("Plain", (2,)))
    with pytest.raises(BuildError):
        net.connect("Super", "Missing", PrjnType.FORWARD)
    with pytest.raises(BuildError):
        net.connect(Layer("Stray", (3,)), "Super", PrjnType.FORWARD)

    net.connect("Super", "Plain", PrjnType.DEEP_ATTN)
    with pytest.raises(BuildError):
        net.build()

    net2 = DeepNetwork()
    net2.add_layer(Layer("Plain", (3,)))
    net2.add_layer(DeepLayer("TRC", (3,)))
    net2.connect("Plain", "TRC", PrjnType.BURST_TRC)
    with pytest.raises(BuildError):
        net2.build()

    # 拓扑失败时任何投射都未 build, 修正后可以重新 build
    net4 = DeepNetwork()
    net4.add_layer(DeepLayer("A", (3,)))
    net4.add_layer(Layer("Plain", (3,)))
    lateral = net4.connect("A", "A", PrjnType.LATERAL)
    bad = net4.connect("A", "Plain", PrjnType.DEEP_ATTN)
    with pytest.raises(BuildError):
        net4.build()
    assert not lateral.is_built
    assert not bad.is_built
    net4.prjns.remove(bad)
    net4.layer("A").send_prjns.remove(bad)
    net4.layer("Plain").recv_prjns.remove(bad)
    net4.build()
    assert lateral.is_built

    net3 = DeepNetwork()
    net3.add_layer(DeepLayer("A", (2,)))
    net3.connect("A", "A", PrjnType.LATERAL)
    net3.build()
    with pytest.raises(BuildError):
        net3.build()
    with pytest.raises(BuildError):
        net3.connect("A", "A", PrjnType.BACK)
    print(f"  {net3}")


# =============================================================================
# Case 6: 扇出失败不留下残余贡献
# =============================================================================

def failing_send(pj, name, fail_lo=0):
    """包装 pj 的批量发送: 起点 >= fail_lo 的区间抛出 IndexViolation"""
    orig = getattr(pj, name)

    def send(deltas, out=None, lo=0, hi=None):
        if lo >= fail_lo:
            raise IndexViolation(f"{pj.name}: 发送者区间 [{lo}, {hi}) 失败")
        orig(deltas, out=out, lo=lo, hi=hi)
    return send


@pytest.mark.parametrize("n_workers", [1, 4])
def test_case_6_failed_fan_out_clears_accumulators(monkeypatch, n_workers):
    print_header(f"Case 6: 扇出失败 (n_workers={n_workers})")

    with make_net(n_workers=n_workers, n=8) as net:
        fwd = prjn_of(net, PrjnType.FORWARD)
        attn = prjn_of(net, PrjnType.DEEP_ATTN)
        # 串行: FORWARD 成功后 DEEP_ATTN 失败; 并行: DEEP_ATTN 的首块成功, 其余块失败
        monkeypatch.setattr(attn, "send_attn_ge_deltas",
                            failing_send(attn, "send_attn_ge_deltas",
                                         fail_lo=0 if n_workers == 1 else 1))

        net.layer("Input").apply_ext(0.7)
        net.layer("Deep").apply_ext(0.7)
        with pytest.raises(IndexViolation):
            net.cycle(quarter=0)

        assert np.all(fwd.ge_inc == 0.0)
        assert np.all(attn.attn_ge_inc == 0.0)
        assert np.all(net.layer("Super").ge == 0.0)
        assert np.all(net.layer("Super").attn_ge == 0.0)

        # 恢复后下一个周期只包含本周期的贡献
        monkeypatch.undo()
        net.layer("Input").act_sent[:] = 0.0
        net.layer("Deep").act_sent[:] = 0.0
        net.cycle(quarter=0)
        exp_attn = (net.layer("Deep").act * attn.ge_scale) @ dense_weights(attn)
        np.testing.assert_allclose(net.layer("Super").attn_ge, exp_attn, rtol=1e-12)
