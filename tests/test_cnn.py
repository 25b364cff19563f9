import io

import numpy as np
import pytest

from voxgeom.cnn import (
    CNN,
    Activation,
    AvgPool,
    Conv,
    CrossEntropy,
    Full,
    LeakyReLU,
    MaxPool,
    ReLU,
    Sigmoid,
    SoftMax,
    TanH,
)


def _numeric_grad(layer, x, e, h=1.0):
    """For layers linear in x, d(e . forward(x))/dx by finite differences."""
    base = float(np.dot(e, layer.forward(x)))
    g = np.zeros(len(x))
    for i in range(len(x)):
        xp = x.copy()
        xp[i] += h
        g[i] = (float(np.dot(e, layer.forward(xp))) - base) / h
    return g


def test_activation_values():
    assert Sigmoid.f(0.0) == pytest.approx(0.5)
    assert LeakyReLU.f(-1.0) == pytest.approx(-0.01)
    assert float(ReLU.f(-3.0)) == 0.0
    assert float(ReLU.df(2.0)) == 1.0
    assert TanH.df(TanH.f(0.0)) == pytest.approx(1.0)


def test_activation_backward_matches_derivative():
    x = np.array([-1.0, 0.0, 0.5, 2.0], dtype=np.float32)
    layer = Activation(Sigmoid, 4)
    y = layer.forward(x)
    e = np.ones(4, dtype=np.float32)
    d = layer.backward(x, y, e)
    h = 1e-3
    numeric = (Sigmoid.f(x + h) - Sigmoid.f(x - h)) / (2 * h)
    assert np.allclose(d, numeric, atol=1e-3)


def test_avgpool_constant_and_backward():
    pool = AvgPool((4, 4, 2))
    out = pool.forward(np.full(32, 3.0))
    assert out.shape == (8,)
    assert np.allclose(out, 3.0)
    d = pool.backward(None, None, np.ones(8))
    assert np.allclose(d, 0.25)


def test_maxpool_forward_picks_block_maximum():
    pool = MaxPool((4, 4, 1))
    x = np.arange(16, dtype=np.float32)
    out = pool.forward(x)
    assert list(out) == [x[5], x[7], x[13], x[15]]


def test_maxpool_backward_routes_error_to_max():
    pool = MaxPool((4, 4, 1))
    x = np.arange(16, dtype=np.float32)
    e = np.array([1.0, 2.0, 3.0, 4.0], dtype=np.float32)
    d = pool.backward(x, pool.forward(x), e)
    assert d[5] == 1.0 and d[7] == 2.0 and d[13] == 3.0 and d[15] == 4.0
    assert np.count_nonzero(d) == 4
    assert d.sum() == pytest.approx(e.sum())


def test_full_identity_weights():
    layer = Full(3, 3)
    layer.W[...] = np.eye(3)
    layer.B[...] = [1.0, 2.0, 3.0]
    out = layer.forward([4.0, 5.0, 6.0])
    assert np.allclose(out, [5.0, 7.0, 9.0])


def test_full_backward_is_input_gradient():
    layer = Full(4, 3)
    layer.init(np.random.default_rng(1))
    x = np.random.default_rng(2).normal(size=4).astype(np.float32)
    e = np.array([0.5, -1.0, 2.0], dtype=np.float32)
    d = layer.backward(x, layer.forward(x), e)
    assert np.allclose(d, _numeric_grad(layer, x, e), atol=1e-4)


def test_full_update_reduces_linear_loss():
    layer = Full(4, 3)
    layer.init(np.random.default_rng(3))
    x = np.random.default_rng(4).normal(size=4).astype(np.float32)
    e = np.array([1.0, -0.5, 0.25], dtype=np.float32)
    y = layer.forward(x)
    before = float(np.dot(e, y))
    layer.update(x, y, e, 0.1)
    assert float(np.dot(e, layer.forward(x))) < before


def test_full_init_within_bound():
    layer = Full(10, 6)
    layer.init(np.random.default_rng(0))
    bound = np.sqrt(6.0 / 16)
    assert np.all(np.abs(layer.W) <= bound)
    assert np.any(layer.W != 0)
    assert np.all(layer.B == 0)


def test_full_rejects_wrong_input_size():
    with pytest.raises(ValueError):
        Full(3, 2).forward([1.0, 2.0])


def test_conv_one_by_one_kernel_scales():
    conv = Conv((3, 2, 1), (1, 1, 1, 1), (3, 2, 1))
    conv.W[...] = 2.0
    conv.B[...] = 1.0
    x = np.arange(6, dtype=np.float32)
    assert np.allclose(conv.forward(x), 2 * x + 1)


def test_conv_full_kernel_is_dot_product():
    conv = Conv((3, 2, 2), (3, 2, 2, 1), (1, 1, 1))
    conv.init(np.random.default_rng(5))
    conv.B[...] = 0.5
    x = np.random.default_rng(6).normal(size=12).astype(np.float32)
    out = conv.forward(x)
    assert out.shape == (1,)
    assert out[0] == pytest.approx(float(np.dot(conv.W.reshape(-1), x)) + 0.5, abs=1e-5)


def test_conv_backward_is_input_gradient():
    conv = Conv((5, 4, 2), (3, 2, 2, 3), (3, 3, 3))
    conv.init(np.random.default_rng(7))
    x = np.random.default_rng(8).normal(size=40).astype(np.float32)
    e = np.random.default_rng(9).normal(size=27).astype(np.float32)
    d = conv.backward(x, conv.forward(x), e)
    assert np.allclose(d, _numeric_grad(conv, x, e), atol=1e-3)


def test_conv_update_reduces_linear_loss():
    conv = Conv((4, 4, 1), (2, 2, 1, 2), (3, 3, 2))
    conv.init(np.random.default_rng(10))
    x = np.random.default_rng(11).normal(size=16).astype(np.float32)
    e = np.random.default_rng(12).normal(size=18).astype(np.float32)
    y = conv.forward(x)
    before = float(np.dot(e, y))
    conv.update(x, y, e, 0.05)
    assert float(np.dot(e, conv.forward(x))) < before


def test_conv_rejects_mismatched_channels():
    with pytest.raises(ValueError):
        Conv((4, 4, 2), (2, 2, 1, 1), (3, 3, 1))


def test_softmax_sums_to_one_and_gradient():
    sm = SoftMax(4)
    x = np.array([0.1, -0.3, 1.2, 0.4], dtype=np.float32)
    y = sm.forward(x)
    assert y.sum() == pytest.approx(1.0, abs=1e-6)
    assert np.argmax(y) == np.argmax(x)
    e = np.array([1.0, 0.0, -1.0, 0.5], dtype=np.float32)
    d = sm.backward(x, y, e)
    h = 1e-3
    numeric = [
        (np.dot(e, sm.forward(x + h * np.eye(4)[i])) - np.dot(e, sm.forward(x - h * np.eye(4)[i]))) / (2 * h)
        for i in range(4)
    ]
    assert np.allclose(d, numeric, atol=1e-3)


def test_cross_entropy_groups():
    ce = CrossEntropy(6, 3)
    x = np.array([1.0, 2.0, 3.0, 100.0, 100.0, 100.0], dtype=np.float32)
    y = ce.forward(x)
    assert y[:3].sum() == pytest.approx(1.0, abs=1e-6)
    assert np.allclose(y[3:], 1.0 / 3.0)
    e = np.array([1, 2, 3, 4, 5, 6], dtype=np.float32)
    assert np.array_equal(ce.backward(x, y, e), e)


def test_cross_entropy_default_group_is_whole_input():
    ce = CrossEntropy()
    y = ce.forward([0.0, 1.0, 2.0, 3.0])
    assert ce.group_size == 4
    assert y.sum() == pytest.approx(1.0, abs=1e-6)


def test_cnn_structure_and_determinism():
    net = CNN([2, 3, 1])
    assert [type(layer) for layer in net.layers] == [Full, Activation, Full, Activation]
    other = CNN([2, 3, 1])
    assert np.array_equal(net.layers[0].W, other.layers[0].W)
    out = net.eval([0.5, -0.5])
    assert out.shape == (1,)
    assert -1.0 <= out[0] <= 1.0


def test_cnn_training_reduces_error():
    net = CNN([2, 6, 1])
    data = [([0, 0], [-0.5]), ([0, 1], [0.5]), ([1, 0], [0.5]), ([1, 1], [-0.5])]

    def total():
        return sum(float(np.mean((net.eval(x) - t) ** 2)) for x, t in data)

    before = total()
    for _ in range(400):
        for x, t in data:
            net.train(x, t, 0.1)
    assert total() < before


def test_cnn_train_returns_mse():
    net = CNN([2, 2])
    x, t = [0.3, 0.7], [0.1, -0.2]
    y = net.eval(x)
    mse = net.train(x, t, 0.0)
    assert mse == pytest.approx(float(np.mean((y - np.array(t)) ** 2)), rel=1e-5)


def test_cnn_empty_eval_raises():
    with pytest.raises(ValueError):
        CNN().eval([1.0])


def test_text_round_trip():
    net = CNN([3, 4, 2])
    buf = io.StringIO()
    net.save_text(buf)
    other = CNN(layers=[Full(3, 4), Activation(TanH), Full(4, 2), Activation(TanH)])
    buf.seek(0)
    other.load_text(buf)
    assert np.allclose(other.layers[0].W, net.layers[0].W, rtol=1e-5, atol=1e-6)
    assert np.allclose(other.eval([1, 2, 3]), net.eval([1, 2, 3]), atol=1e-4)


def test_text_load_short_stream_raises():
    net = CNN([3, 2])
    with pytest.raises(ValueError):
        net.load_text(io.StringIO("1 2 3"))


def test_binary_round_trip(tmp_path):
    net = CNN([3, 5, 2])
    path = tmp_path / "net.bin"
    net.save_binary(path)
    expected = sum(p.size for layer in net.layers for p in layer.parameters()) * 4
    assert path.stat().st_size == expected
    other = CNN(layers=[Full(3, 5), Activation(TanH), Full(5, 2), Activation(TanH)])
    other.load_binary(path)
    for a, b in zip(net.layers, other.layers):
        for pa, pb in zip(a.parameters(), b.parameters()):
            assert np.array_equal(pa, pb)


def test_binary_load_short_file_raises(tmp_path):
    path = tmp_path / "short.bin"
    path.write_bytes(b"\x00" * 8)
    with pytest.raises(ValueError):
        CNN([3, 2]).load_binary(path)