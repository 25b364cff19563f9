"""A small convolutional neural network built from simple layers.

Tensors are flat float32 arrays laid out with x varying fastest, then y,
then z (channel); internally they are viewed with shape (z, y, x).
"""

from __future__ import annotations

from typing import BinaryIO, Iterable, Sequence, TextIO

import numpy as np

_DTYPE = np.float32


def _flat(x) -> np.ndarray:
    return np.asarray(x, dtype=_DTYPE).reshape(-1)


def _dims3(dims) -> tuple[int, int, int]:
    x, y, z = (int(d) for d in dims)
    return x, y, z


# --------------------------------------------------------------------------
# activation functions: f(t), and the derivative expressed through f(t)

class Sigmoid:
    @staticmethod
    def f(t):
        return 1.0 / (1.0 + np.exp(-np.asarray(t, dtype=_DTYPE)))

    @staticmethod
    def df(f_t):
        f_t = np.asarray(f_t, dtype=_DTYPE)
        return f_t * (1 - f_t)


class TanH:
    @staticmethod
    def f(t):
        return np.tanh(np.asarray(t, dtype=_DTYPE))

    @staticmethod
    def df(f_t):
        f_t = np.asarray(f_t, dtype=_DTYPE)
        return 1.0 - f_t * f_t


class ReLU:
    @staticmethod
    def f(t):
        return np.maximum(np.asarray(t, dtype=_DTYPE), 0.0)

    @staticmethod
    def df(f_t):
        return np.where(np.asarray(f_t) > 0.0, 1.0, 0.0).astype(_DTYPE)


class LeakyReLU:
    @staticmethod
    def f(t):
        t = np.asarray(t, dtype=_DTYPE)
        return np.maximum(np.float32(0.01) * t, t)

    @staticmethod
    def df(f_t):
        return np.where(np.asarray(f_t) > 0.0, 1.0, 0.01).astype(_DTYPE)


# --------------------------------------------------------------------------
# layers

class Layer:
    """Base layer: forward pass, error back-propagation and optional learning."""

    def forward(self, x) -> np.ndarray:
        raise NotImplementedError

    def backward(self, x, y, e) -> np.ndarray:
        raise NotImplementedError

    def update(self, x, y, e, alpha) -> None:
        """Adjust parameters; layers without parameters do nothing."""

    def init(self, rng) -> None:
        """Randomise parameters; layers without parameters do nothing."""

    def parameters(self) -> list[np.ndarray]:
        """Arrays saved and loaded for this layer, in order."""
        return []


class _Pool(Layer):
    def __init__(self, indims) -> None:
        self.indims = _dims3(indims)

    @property
    def outdims(self) -> tuple[int, int, int]:
        x, y, z = self.indims
        return x // 2, y // 2, z

    def _view_in(self, x) -> np.ndarray:
        ix, iy, iz = self.indims
        arr = _flat(x)
        if arr.size != ix * iy * iz:
            raise ValueError(f"expected {ix * iy * iz} inputs, got {arr.size}")
        return arr.reshape(iz, iy, ix)

    def _blocks(self, x) -> np.ndarray:
        """2x2 blocks with shape (z, oy, ox, 4), x varying fastest in a block."""
        ox, oy, oz = self.outdims
        t = self._view_in(x)[:, : 2 * oy, : 2 * ox]
        return t.reshape(oz, oy, 2, ox, 2).transpose(0, 1, 3, 2, 4).reshape(oz, oy, ox, 4)

    def _unblock(self, blocks) -> np.ndarray:
        ix, iy, iz = self.indims
        ox, oy, oz = self.outdims
        d = np.zeros((iz, iy, ix), dtype=_DTYPE)
        d[:, : 2 * oy, : 2 * ox] = (
            blocks.reshape(oz, oy, ox, 2, 2).transpose(0, 1, 3, 2, 4).reshape(oz, 2 * oy, 2 * ox)
        )
        return d.reshape(-1)


class AvgPool(_Pool):
    """2x2 average pooling."""

    def forward(self, x) -> np.ndarray:
        return (self._blocks(x).sum(axis=3) / np.float32(4.0)).astype(_DTYPE).reshape(-1)

    def backward(self, x, y, e) -> np.ndarray:
        ox, oy, oz = self.outdims
        er = _flat(e).reshape(oz, oy, ox)
        blocks = np.repeat((er / np.float32(4.0))[..., None], 4, axis=3)
        return self._unblock(blocks)


class MaxPool(_Pool):
    """2x2 max pooling."""

    def forward(self, x) -> np.ndarray:
        return self._blocks(x).max(axis=3).reshape(-1)

    def backward(self, x, y, e) -> np.ndarray:
        ox, oy, oz = self.outdims
        er = _flat(e).reshape(oz, oy, ox)
        k = self._blocks(x).argmax(axis=3)
        blocks = np.zeros((oz, oy, ox, 4), dtype=_DTYPE)
        np.put_along_axis(blocks, k[..., None], er[..., None], axis=3)
        return self._unblock(blocks)


class Conv(Layer):
    """Convolution with kernel dims (kx, ky, in_channels, out_channels).

    W has shape (out, in, ky, kx) so that its flat order has kx fastest.
    """

    def __init__(self, indims, dims, outdims) -> None:
        self.indims = _dims3(indims)
        kx, ky, kz, kw = (int(d) for d in dims)
        self.dims = (kx, ky, kz, kw)
        self.outdims = _dims3(outdims)
        ix, iy, iz = self.indims
        ox, oy, oz = self.outdims
        if kz != iz or kw != oz:
            raise ValueError("kernel channels do not match input and output depth")
        if ox + kx - 1 > ix or oy + ky - 1 > iy:
            raise ValueError("output dims too large for input and kernel")
        self.W = np.zeros((kw, kz, ky, kx), dtype=_DTYPE)
        self.B = np.zeros(kw, dtype=_DTYPE)

    def _input(self, x) -> np.ndarray:
        ix, iy, iz = self.indims
        arr = _flat(x)
        if arr.size != ix * iy * iz:
            raise ValueError(f"expected {ix * iy * iz} inputs, got {arr.size}")
        return arr.reshape(iz, iy, ix)

    def _patches(self, inp):
        ox, oy, _ = self.outdims
        kx, ky, _, _ = self.dims
        for py in range(ky):
            for px in range(kx):
                yield py, px, inp[:, py:py + oy, px:px + ox]

    def forward(self, x) -> np.ndarray:
        ox, oy, oz = self.outdims
        out = np.broadcast_to(self.B[:, None, None], (oz, oy, ox)).astype(_DTYPE)
        for py, px, patch in self._patches(self._input(x)):
            out += np.einsum("oi,iyx->oyx", self.W[:, :, py, px], patch)
        return out.reshape(-1)

    def backward(self, x, y, e) -> np.ndarray:
        ix, iy, iz = self.indims
        ox, oy, oz = self.outdims
        er = _flat(e).reshape(oz, oy, ox)
        d = np.zeros((iz, iy, ix), dtype=_DTYPE)
        kx, ky, _, _ = self.dims
        for py in range(ky):
            for px in range(kx):
                d[:, py:py + oy, px:px + ox] += np.einsum("oi,oyx->iyx", self.W[:, :, py, px], er)
        return d.reshape(-1)

    def update(self, x, y, e, alpha) -> None:
        ox, oy, oz = self.outdims
        er = _flat(e).reshape(oz, oy, ox)
        a = np.float32(alpha)
        for py, px, patch in self._patches(self._input(x)):
            self.W[:, :, py, px] -= a * np.einsum("oyx,iyx->oi", er, patch)
        self.B -= a * er.sum(axis=(1, 2))

    def init(self, rng) -> None:
        kx, ky, kz, kw = self.dims
        bound = np.sqrt(6.0 / (kx * ky * kz + kx * ky * kw))
        self.W[...] = rng.uniform(-bound, bound, self.W.shape)

    def parameters(self) -> list[np.ndarray]:
        return [self.W, self.B]


class Full(Layer):
    """Fully connected layer; W has shape (inputs, outputs)."""

    def __init__(self, input_size: int, output_size: int) -> None:
        self.M = int(input_size)
        self.N = int(output_size)
        self.W = np.zeros((self.M, self.N), dtype=_DTYPE)
        self.B = np.zeros(self.N, dtype=_DTYPE)

    def forward(self, x) -> np.ndarray:
        arr = _flat(x)
        if arr.size != self.M:
            raise ValueError(f"expected {self.M} inputs, got {arr.size}")
        return (self.B + arr @ self.W).astype(_DTYPE)

    def backward(self, x, y, e) -> np.ndarray:
        return (self.W @ _flat(e)).astype(_DTYPE)

    def update(self, x, y, e, alpha) -> None:
        er = _flat(e)
        a = np.float32(alpha)
        self.B -= er * a
        self.W -= np.outer(_flat(x), er) * a

    def init(self, rng) -> None:
        bound = np.sqrt(6.0 / (self.M + self.N))
        self.W[...] = rng.uniform(-bound, bound, self.W.shape)

    def parameters(self) -> list[np.ndarray]:
        return [self.W, self.B]


class Activation(Layer):
    """Elementwise activation using one of the activation function classes."""

    def __init__(self, func=TanH, n: int = 0) -> None:
        self.func = func
        self.n = n

    def forward(self, x) -> np.ndarray:
        return np.asarray(self.func.f(_flat(x)), dtype=_DTYPE)

    def backward(self, x, y, e) -> np.ndarray:
        return (np.asarray(self.func.df(_flat(y)), dtype=_DTYPE) * _flat(e)).astype(_DTYPE)


class SoftMax(Layer):
    def __init__(self, n: int = 0) -> None:
        self.n = n

    def forward(self, x) -> np.ndarray:
        y = np.exp(_flat(x))
        return (y / y.sum()).astype(_DTYPE)

    def backward(self, x, y, e) -> np.ndarray:
        yy, ee = _flat(y), _flat(e)
        dp = np.dot(ee, yy)
        return (yy * (ee - dp)).astype(_DTYPE)


class CrossEntropy(Layer):
    """Softmax over consecutive groups; the error passes straight back.

    A group size of 0 takes the whole input as one group at the first forward.
    """

    def __init__(self, n: int = 0, group_size: int = 0) -> None:
        self.n = n
        self.group_size = int(group_size)

    def forward(self, x) -> np.ndarray:
        out = _flat(x).copy()
        if not self.group_size:
            self.group_size = out.size
        g = self.group_size
        count = out.size // g
        groups = out[: count * g].reshape(count, g)
        y = np.exp(groups - groups.max(axis=1, keepdims=True))
        out[: count * g] = (y / y.sum(axis=1, keepdims=True)).reshape(-1)
        return out

    def backward(self, x, y, e) -> np.ndarray:
        return _flat(e).copy()


# --------------------------------------------------------------------------
# network

class CNN:
    """A stack of layers trained by plain stochastic gradient descent.

    Given layer sizes, builds fully connected layers each followed by tanh.
    """

    def __init__(self, sizes: Sequence[int] = (), layers: Iterable[Layer] = ()) -> None:
        self.layers: list[Layer] = list(layers)
        for m, n in zip(sizes, list(sizes)[1:]):
            self.layers.append(Full(m, n))
            self.layers.append(Activation(TanH, n))
        if sizes:
            self.init()

    def _forward_all(self, x) -> list[np.ndarray]:
        if not self.layers:
            raise ValueError("network has no layers")
        outputs = []
        current = _flat(x)
        for layer in self.layers:
            current = layer.forward(current)
            outputs.append(current)
        return outputs

    def eval(self, x) -> np.ndarray:
        return self._forward_all(x)[-1]

    def train(self, x, t, alpha: float = 0.01) -> float:
        """One gradient step towards target t; returns the mean square error."""
        x = _flat(x)
        outputs = self._forward_all(x)
        out = outputs[-1]
        target = _flat(t)
        if target.size < out.size:
            raise ValueError("target is shorter than the network output")
        errors: list[np.ndarray] = [np.zeros(0, dtype=_DTYPE)] * len(self.layers)
        errors[-1] = (out - target[: out.size]).astype(_DTYPE)
        mse = float(np.mean(errors[-1].astype(np.float64) ** 2))
        for i in range(len(self.layers) - 1, 0, -1):
            errors[i - 1] = self.layers[i].backward(outputs[i - 1], outputs[i], errors[i])
        for i, layer in enumerate(self.layers):
            layer.update(outputs[i - 1] if i else x, outputs[i], errors[i], alpha)
        return mse

    def init(self) -> None:
        """Randomise all parameters from a fixed seed, so results repeat."""
        rng = np.random.default_rng(0)
        for layer in self.layers:
            layer.init(rng)

    def _parameters(self) -> list[np.ndarray]:
        return [p for layer in self.layers for p in layer.parameters()]

    def save_text(self, stream: TextIO) -> None:
        for p in self._parameters():
            stream.write("".join(f"{float(w):g} " for w in p.reshape(-1)))

    def load_text(self, stream: TextIO) -> None:
        tokens = iter(stream.read().split())
        for p in self._parameters():
            flat = p.reshape(-1)
            try:
                values = [float(next(tokens)) for _ in range(flat.size)]
            except StopIteration:
                raise ValueError("not enough values in stream") from None
            flat[:] = values

    def _write(self, fh: BinaryIO) -> None:
        for p in self._parameters():
            fh.write(p.astype("<f4").tobytes())

    def save_binary(self, path) -> None:
        with open(path, "wb") as fh:
            self._write(fh)

    def load_binary(self, path) -> None:
        with open(path, "rb") as fh:
            for p in self._parameters():
                data = fh.read(p.size * 4)
                if len(data) != p.size * 4:
                    raise ValueError(f"{path} is too short")
                p.reshape(-1)[:] = np.frombuffer(data, dtype="<f4")