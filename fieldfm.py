"""fieldfm — field-aware factorization machines in pure Python.

Binary classifier over sparse, field-tagged features.  Every
``(feature index, field)`` pair owns a length-``k`` embedding; two features
``(j1, f1)`` and ``(j2, f2)`` from different fields interact through the dot
product of ``w[j1, f2]`` and ``w[j2, f1]``.

- Logistic loss, labels mapped to +1 / -1
- Per-coordinate AdaGrad with L2 regularisation
- Optional instance-wise normalisation of the pairwise term: every pair is
  scaled by ``r = 1 / sum(v^2)`` over the row (``1/||x||^2``, not
  ``1/||x||``), so multiplying a row by ``c > 0`` leaves its prediction
  unchanged
- Plain-text model format (libffm style)

::

    table = Table.read_libffm("train.ffm")
    model = train(table, Parameters(k=4, nr_iters=15))
    predict([Node(0, 3, 1.0), Node(1, 7, 1.0)], model)   # → 0.83
    save(model, "model.txt")

Requires only **numpy** and **numba**.

Weight layout (float32, one flat 16-byte aligned buffer)::

    training   index * m * 2k + field * 2k + d      d <  k : embedding
                                                    d >= k : AdaGrad sum
    shrunk     index * m * k  + field * k  + d
"""

from __future__ import annotations

import argparse
import math
import sys
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Iterable, Iterator, NamedTuple

import numpy as np
from numba import config, njit, prange, set_num_threads

SIMD_WIDTH = 4
ALIGN_BYTES = 16

SCORE = "score"
UPDATE = "update"


# ── errors ───────────────────────────────────────────────────────────────────


class FFMError(Exception):
    """Base class for fieldfm errors."""


class AllocationError(FFMError, MemoryError):
    """The weight buffer could not be allocated."""


class MalformedInputError(FFMError, ValueError):
    """A row (or model file) does not have the expected types."""


# ── rows ─────────────────────────────────────────────────────────────────────


class Node(NamedTuple):
    field: int
    index: int
    value: float


@dataclass
class Parameters:
    eta: float          = 0.1
    lambda_: float      = 0.0
    nr_iters: int       = 15
    k: int              = 4
    nr_threads: int     = 1
    quiet: bool         = False
    normalization: bool = False
    random: bool        = True     # reserved, rows are always visited in order
    seed: int           = 0


class _Rows(NamedTuple):
    """CSR encoding of a table: row i spans ``offsets[i]:offsets[i + 1]``."""
    offsets: np.ndarray     # int64
    fields: np.ndarray      # int32
    indices: np.ndarray     # int64
    values: np.ndarray      # float32
    labels: np.ndarray | None

    def __len__(self):
        return len(self.offsets) - 1


_INT32 = np.iinfo(np.int32)
_INT64 = np.iinfo(np.int64)


def _fit_or_skip(x, info) -> int:
    # -1 is out of range for every model, so the kernel skips the node while
    # its value still counts towards the row scale
    return x if info.min <= x <= info.max else -1


def _node_arrays(nodes: Iterable) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    fields, indices, values = [], [], []
    for f, j, v in nodes:
        fields.append(_fit_or_skip(f, _INT32))
        indices.append(_fit_or_skip(j, _INT64))
        values.append(v)
    return (np.array(fields, dtype=np.int32),
            np.array(indices, dtype=np.int64),
            np.array(values, dtype=np.float32))


def _is_int(x) -> bool:
    return (isinstance(x, (int, np.integer))
            and not isinstance(x, (bool, np.bool_)))


def _is_number(x) -> bool:
    return (isinstance(x, (int, float, np.number))
            and not isinstance(x, (bool, np.bool_)))


def _encode(table: Table, target: str | None, features: list[str]) -> _Rows:
    """Flatten *table* into CSR arrays.

    The field id of a node is the position of its column in *features*.
    Raises MalformedInputError at the first row with a non-integer label or
    a feature value that is neither None nor an int-keyed mapping.
    """
    ti = table.column_index(target) if target is not None else -1
    cols = [table.column_index(c) for c in features]

    offsets, fields, indices, values, labels = [0], [], [], [], []
    for i, row in enumerate(table.iter_rows()):
        if ti >= 0:
            y = row[ti]
            if not _is_int(y):
                raise MalformedInputError(
                    f"row {i}: response must be integer type, "
                    f"got {type(y).__name__}")
            labels.append(1.0 if y > 0 else -1.0)

        for f, c in enumerate(cols):
            cell = row[c]
            if cell is None:
                continue
            if not isinstance(cell, Mapping):
                raise MalformedInputError(
                    f"row {i}: feature column {features[f]!r} must be a "
                    f"dict, got {type(cell).__name__}")
            for key, val in cell.items():
                if not _is_int(key):
                    raise MalformedInputError(
                        f"row {i}: feature column {features[f]!r} has "
                        f"non-integer key {key!r}")
                if not _is_number(val):
                    raise MalformedInputError(
                        f"row {i}: feature column {features[f]!r} has "
                        f"non-numeric value {val!r}")
                fields.append(f)
                indices.append(_fit_or_skip(int(key), _INT64))
                values.append(float(val))
        offsets.append(len(fields))

    return _Rows(np.array(offsets, dtype=np.int64),
                 np.array(fields, dtype=np.int32),
                 np.array(indices, dtype=np.int64),
                 np.array(values, dtype=np.float32),
                 np.array(labels, dtype=np.float32) if ti >= 0 else None)


# ── kernels ──────────────────────────────────────────────────────────────────


@njit(cache=True)
def _offset(index, field, m, stride):
    """Start of the ``(index, field)`` block in the flat weight buffer."""
    return (np.int64(index) * m + field) * stride


@njit(cache=True)
def _row_scale(values, begin, end, normalization):
    if not normalization:
        return np.float32(1.0)
    s = np.float32(0.0)
    for a in range(begin, end):
        s += values[a] * values[a]
    if s > np.float32(0.0):
        return np.float32(1.0) / s
    return np.float32(1.0)


@njit(fastmath=True, cache=True)
def _wtx(fields, indices, values, begin, end, r, w, n, m, k, stride,
         kappa, eta, lam, do_update):
    """Pairwise interaction term of one row.

    Score mode returns ``sum_{a<b, f_a != f_b} <w[j_a, f_b], w[j_b, f_a]>
    * 2 v_a v_b r``.  Update mode walks the same pairs in the same order and
    applies one AdaGrad step to both embeddings of every pair (accumulators
    live ``k`` floats after the embedding, so ``stride`` must be ``2k``);
    it returns 0.
    """
    t = np.float32(0.0)

    for a in range(begin, end):
        j1 = indices[a]
        f1 = fields[a]
        v1 = values[a]
        if j1 < 0 or j1 >= n or f1 < 0 or f1 >= m:
            continue

        for b in range(a + 1, end):
            j2 = indices[b]
            f2 = fields[b]
            v2 = values[b]
            if j2 < 0 or j2 >= n or f2 < 0 or f2 >= m or f1 == f2:
                continue

            o1 = _offset(j1, f2, m, stride)
            o2 = _offset(j2, f1, m, stride)
            v = np.float32(2.0) * v1 * v2 * r

            if do_update:
                kappa_v = kappa * v
                for d in range(k):
                    x1 = w[o1 + d]
                    x2 = w[o2 + d]
                    g1 = lam * x1 + kappa_v * x2
                    g2 = lam * x2 + kappa_v * x1
                    wg1 = w[o1 + k + d] + g1 * g1
                    wg2 = w[o2 + k + d] + g2 * g2
                    w[o1 + k + d] = wg1
                    w[o2 + k + d] = wg2
                    w[o1 + d] = x1 - eta * g1 / np.sqrt(wg1)
                    w[o2 + d] = x2 - eta * g2 / np.sqrt(wg2)
            else:
                for d in range(k):
                    t += w[o1 + d] * w[o2 + d] * v

    if do_update:
        return np.float32(0.0)
    return t


@njit(fastmath=True, cache=True)
def _train_epoch(offsets, fields, indices, values, labels, w, n, m, k,
                 normalization, eta, lam):
    """One pass over all rows in order. Returns the summed log-loss."""
    loss = 0.0
    stride = 2 * k
    zero = np.float32(0.0)
    for i in range(len(labels)):
        s = offsets[i]
        e = offsets[i + 1]
        r = _row_scale(values, s, e, normalization)
        y = labels[i]

        t = _wtx(fields, indices, values, s, e, r, w, n, m, k, stride,
                 zero, zero, zero, False)

        yt = np.float64(y) * np.float64(t)
        loss += np.logaddexp(0.0, -yt)
        # d/dt log(1 + exp(-y t)) = -y exp(-y t) / (1 + exp(-y t))
        if yt >= 0.0:
            ex = np.exp(-yt)
            kappa = np.float32(-np.float64(y) * ex / (1.0 + ex))
        else:
            kappa = np.float32(-np.float64(y) / (1.0 + np.exp(yt)))

        _wtx(fields, indices, values, s, e, r, w, n, m, k, stride,
             kappa, eta, lam, True)
    return loss


@njit(parallel=True, fastmath=True, cache=True)
def _score_rows(offsets, fields, indices, values, w, n, m, k, stride,
                normalization, out):
    zero = np.float32(0.0)
    for i in prange(len(out)):
        s = offsets[i]
        e = offsets[i + 1]
        r = _row_scale(values, s, e, normalization)
        out[i] = _wtx(fields, indices, values, s, e, r, w, n, m, k, stride,
                      zero, zero, zero, False)


@njit(cache=True)
def _shrink(w, n, m, k_old, k_new):
    # dst <= src for every block, so a forward scan never clobbers unread data
    for j in range(n):
        for f in range(m):
            src = (j * m + f) * k_old * 2
            dst = (j * m + f) * k_new
            for d in range(k_new):
                w[dst + d] = w[src + d]


# ── model ────────────────────────────────────────────────────────────────────


def _aligned_empty(size: int) -> np.ndarray:
    """float32 buffer of *size* elements starting on an ALIGN_BYTES boundary."""
    nbytes = size * 4
    raw = np.empty(nbytes + ALIGN_BYTES, dtype=np.uint8)
    off = (-raw.ctypes.data) % ALIGN_BYTES
    return raw[off:off + nbytes].view(np.float32)


class FFMModel:
    """Trained (or in-training) FFM parameters.

    While ``accumulators`` is True every ``(index, field)`` block holds
    ``2k`` floats (embedding then AdaGrad sums); after :meth:`shrink` it
    holds ``k``.
    """

    __slots__ = ("n", "m", "k", "normalization", "weights", "accumulators",
                 "history")

    def __init__(self, *, n: int, m: int, k: int, weights: np.ndarray | None,
                 normalization: bool = False, accumulators: bool = False):
        self.n, self.m, self.k = n, m, k
        self.weights = weights
        self.normalization = normalization
        self.accumulators = accumulators
        self.history: list[tuple[float, float | None]] = []

    @property
    def stride(self) -> int:
        return 2 * self.k if self.accumulators else self.k

    @classmethod
    def allocate(cls, n: int, m: int, k: int, normalization: bool = False,
                 seed: int = 0) -> FFMModel:
        """Fresh training-shape model with ``k`` rounded up to SIMD_WIDTH.

        Embedding coordinates are drawn from ``U(0, 0.5 / sqrt(k))``, padding
        coordinates are 0 and accumulators start at 1.
        """
        if k < 1:
            raise ValueError(f"k must be positive, got {k}")
        k_aligned = -(-k // SIMD_WIDTH) * SIMD_WIDTH

        model = cls(n=n, m=m, k=k_aligned, weights=None,
                    normalization=normalization, accumulators=True)
        try:
            model.weights = _aligned_empty(n * m * k_aligned * 2)
        except (MemoryError, ValueError) as e:
            model.release()
            raise AllocationError(
                f"cannot allocate {n}x{m}x{k_aligned * 2} weights") from e

        coef = 0.5 / math.sqrt(k)
        blocks = model.weights.reshape(n, m, 2 * k_aligned)
        rng = np.random.RandomState(seed)
        blocks[:, :, :k] = coef * rng.random_sample((n, m, k))
        blocks[:, :, k:k_aligned] = 0.0
        blocks[:, :, k_aligned:] = 1.0
        return model

    def shrink(self, k_new: int):
        """Drop the AdaGrad half and keep the first *k_new* coordinates."""
        self._check_live()
        if not self.accumulators:
            raise ValueError("model is already shrunk")
        if not 1 <= k_new <= self.k:
            raise ValueError(f"k_new must be in [1, {self.k}], got {k_new}")

        _shrink(self.weights, np.int64(self.n), np.int64(self.m),
                np.int64(self.k), np.int64(k_new))
        size = self.n * self.m * k_new
        compact = _aligned_empty(size)
        compact[:] = self.weights[:size]
        self.weights = compact
        self.k = k_new
        self.accumulators = False

    def release(self):
        self.weights = None

    # ── accessors ─────────────────────────────────────────────────────────

    def _check_live(self):
        if self.weights is None:
            raise ValueError("model has been released")

    def _block(self, index: int, field: int) -> int:
        self._check_live()
        if not (0 <= index < self.n and 0 <= field < self.m):
            raise IndexError(
                f"(index={index}, field={field}) out of range "
                f"for n={self.n}, m={self.m}")
        return (index * self.m + field) * self.stride

    def embedding(self, index: int, field: int) -> np.ndarray:
        """View of the ``k`` embedding coordinates of ``(index, field)``."""
        o = self._block(index, field)
        return self.weights[o:o + self.k]

    def accumulator(self, index: int, field: int) -> np.ndarray:
        """View of the AdaGrad sums of ``(index, field)`` (training shape)."""
        if not self.accumulators:
            raise ValueError("shrunk model has no accumulators")
        o = self._block(index, field) + self.k
        return self.weights[o:o + self.k]

    def embeddings(self) -> np.ndarray:
        """All embeddings as an ``(n, m, k)`` view."""
        self._check_live()
        size = self.n * self.m * self.stride
        return self.weights[:size].reshape(
            self.n, self.m, self.stride)[:, :, :self.k]

    def _dims(self):
        return (np.int64(self.n), np.int64(self.m), np.int64(self.k),
                np.int64(self.stride))


def release(model: FFMModel | None):
    """Free *model*'s buffer. Safe on None and on released models."""
    if model is not None:
        model.release()


def _set_threads(nr_threads: int):
    set_num_threads(max(1, min(int(nr_threads), config.NUMBA_NUM_THREADS)))


# ── kernel / inference API ───────────────────────────────────────────────────


def interact(nodes: Iterable, row_scale: float, model: FFMModel,
             mode: str = SCORE, kappa: float = 0.0, eta: float = 0.0,
             lambda_: float = 0.0) -> float:
    """Run the pairwise kernel over *nodes* (``(field, index, value)``).

    ``mode=SCORE`` returns the raw decision value; ``mode=UPDATE`` applies
    one AdaGrad step with gradient scale *kappa* and returns 0.
    """
    if mode not in (SCORE, UPDATE):
        raise ValueError(f"unknown mode {mode!r}")
    model._check_live()
    if mode == UPDATE and not model.accumulators:
        raise ValueError("cannot update a shrunk model")

    fields, indices, values = _node_arrays(nodes)
    n, m, k, stride = model._dims()
    t = _wtx(fields, indices, values, np.int64(0), np.int64(len(values)),
             np.float32(row_scale), model.weights, n, m, k, stride,
             np.float32(kappa), np.float32(eta), np.float32(lambda_),
             mode == UPDATE)
    return float(t)


def row_scale(nodes: Iterable, normalization: bool) -> float:
    """1, or ``1 / sum(v^2)`` over the row when *normalization* is set."""
    _, _, values = _node_arrays(nodes)
    return float(_row_scale(values, np.int64(0), np.int64(len(values)),
                            normalization))


def _sigmoid(t):
    return 1.0 / (1.0 + np.exp(-t))


def predict(nodes: Iterable, model: FFMModel) -> float:
    """Probability of the positive class for one row."""
    nodes = list(nodes)
    r = row_scale(nodes, model.normalization)
    t = interact(nodes, r, model, SCORE)
    return float(_sigmoid(t))


def _scores(rows: _Rows, model: FFMModel) -> np.ndarray:
    model._check_live()
    out = np.empty(len(rows), dtype=np.float32)
    n, m, k, stride = model._dims()
    _score_rows(rows.offsets, rows.fields, rows.indices, rows.values,
                model.weights, n, m, k, stride, model.normalization, out)
    return out.astype(np.float64)


def _mean_logloss(rows: _Rows, model: FFMModel) -> float:
    t = _scores(rows, model)
    return float(np.mean(np.logaddexp(0.0, -rows.labels * t)))


def predict_table(table: Table, model: FFMModel, *,
                  features: list[str] | None = None,
                  target: str = "label") -> np.ndarray:
    """Probabilities for every row of *table* (scored in parallel).

    *features* defaults to every column except *target*, in column order.
    """
    if features is None:
        features = [c for c in table.column_names if c != target]
    rows = _encode(table, None, features)
    return _sigmoid(_scores(rows, model))


# ── training ─────────────────────────────────────────────────────────────────


def train(training_set: Table, params: Parameters | None = None,
          validation_set: Table | None = None, *, target: str = "label",
          features: list[str] | None = None) -> FFMModel:
    """Train an FFM on *training_set* and return the shrunk model.

    *features* defaults to every column except *target*; the position of a
    column in *features* is its field id.  Label values must be integers
    (``> 0`` is the positive class) and feature cells must be None or a
    ``{int index: number}`` mapping.
    """
    params = params or Parameters()
    if features is None:
        features = [c for c in training_set.column_names if c != target]

    tr = _encode(training_set, target, features)
    va = (_encode(validation_set, target, features)
          if validation_set is not None else None)

    _set_threads(params.nr_threads)

    n = int(tr.indices.max()) + 1 if len(tr.indices) else 0
    model = FFMModel.allocate(max(n, 0), len(features), params.k,
                              normalization=params.normalization,
                              seed=params.seed)
    _fit(model, tr, va, params)
    model.shrink(params.k)
    return model


def _fit(model: FFMModel, tr: _Rows, va: _Rows | None, params: Parameters):
    has_va = va is not None and len(va) > 0
    t0 = time.time()

    if not params.quiet:
        header = f"{'iter':>4}{'tr_logloss':>13}"
        if has_va:
            header += f"{'va_logloss':>13}"
        print(header, file=sys.stderr)

    n, m, k, _ = model._dims()
    for it in range(params.nr_iters):
        loss = _train_epoch(tr.offsets, tr.fields, tr.indices, tr.values,
                            tr.labels, model.weights, n, m, k,
                            model.normalization, np.float32(params.eta),
                            np.float32(params.lambda_))
        tr_loss = float(loss) / max(len(tr), 1)
        va_loss = _mean_logloss(va, model) if has_va else None
        model.history.append((tr_loss, va_loss))

        if not params.quiet:
            line = f"{it:>4}{tr_loss:>13.5f}"
            if va_loss is not None:
                line += f"{va_loss:>13.5f}"
            print(line, file=sys.stderr)

    if not params.quiet:
        print(f"Done, {params.nr_iters} iters over {len(tr)} rows"
              f"  ({time.time() - t0:.1f}s)", file=sys.stderr)


# ── I/O ──────────────────────────────────────────────────────────────────────


def save(model: FFMModel, path: str) -> bool:
    """Write *model* in text form. Returns False if *path* can't be written."""
    emb = model.embeddings()
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(f"n {model.n}\n")
            f.write(f"m {model.m}\n")
            f.write(f"k {model.k}\n")
            f.write(f"normalization {int(bool(model.normalization))}\n")
            for j in range(model.n):
                for fld in range(model.m):
                    vals = " ".join(f"{x:.9g}" for x in emb[j, fld].tolist())
                    f.write(f"w{j},{fld} {vals}\n")
    except OSError:
        return False
    return True


def load(path: str) -> FFMModel | None:
    """Read a model written by :func:`save` (always shrunk shape).

    Returns None if *path* can't be opened or the buffer can't be allocated.
    """
    try:
        with open(path, encoding="utf-8") as f:
            tokens = f.read().split()
    except OSError:
        return None

    try:
        n, m, k = int(tokens[1]), int(tokens[3]), int(tokens[5])
        normalization = bool(int(tokens[7]))
    except (IndexError, ValueError) as e:
        raise MalformedInputError(f"{path}: bad model header") from e
    if min(n, m, k) < 0:
        raise MalformedInputError(f"{path}: negative model dimension")

    try:
        weights = _aligned_empty(n * m * k)
    except (MemoryError, ValueError):
        return None

    # each line: label token + k values; labels are positional only
    body = tokens[8:]
    if len(body) != n * m * (k + 1):
        raise MalformedInputError(
            f"{path}: expected {n * m} weight lines of {k} values")
    try:
        weights[:] = np.array(body).reshape(n * m, k + 1)[:, 1:] \
            .astype(np.float32).ravel()
    except ValueError as e:
        raise MalformedInputError(f"{path}: non-numeric weight") from e

    return FFMModel(n=n, m=m, k=k, weights=weights,
                    normalization=normalization, accumulators=False)


# ── tabular data source ──────────────────────────────────────────────────────


class Table:
    """Minimal in-memory column store.

    Feature columns hold None or ``{index: value}`` dicts, the label column
    holds ints.
    """

    __slots__ = ("_names", "_columns", "_nrows")

    def __init__(self, columns: Mapping[str, list]):
        self._names = list(columns)
        self._columns = [list(v) for v in columns.values()]
        lengths = {len(c) for c in self._columns}
        if len(lengths) > 1:
            raise ValueError(f"columns have different lengths: {lengths}")
        self._nrows = lengths.pop() if lengths else 0

    def __len__(self) -> int:
        return self._nrows

    @property
    def column_names(self) -> list[str]:
        return list(self._names)

    def column_index(self, name: str) -> int:
        try:
            return self._names.index(name)
        except ValueError:
            raise KeyError(f"no column named {name!r}") from None

    def column(self, name: str) -> list:
        return self._columns[self.column_index(name)]

    def iter_rows(self) -> Iterator[list]:
        for i in range(self._nrows):
            yield [c[i] for c in self._columns]

    @classmethod
    def from_records(cls, records: Iterable[Mapping]) -> Table:
        """Build from dicts; keys missing in a record become None."""
        records = list(records)
        names: dict[str, None] = {}
        for rec in records:
            for key in rec:
                names.setdefault(key, None)
        return cls({name: [rec.get(name) for rec in records]
                    for name in names})

    @classmethod
    def read_libffm(cls, path: str, *, label: str = "label",
                    n_fields: int | None = None) -> Table:
        """Load a libffm text file: one dict column ``f<field>`` per field.

        At least *n_fields* feature columns are created, so files read for
        validation or prediction line up with the training columns.
        """
        rows = list(iter_libffm(path))
        m = max((nd.field for _, nodes in rows for nd in nodes),
                default=-1) + 1
        if n_fields is not None:
            m = max(m, n_fields)

        columns: dict[str, list] = {label: [y for y, _ in rows]}
        for fld in range(m):
            columns[f"f{fld}"] = [None] * len(rows)
        for i, (_, nodes) in enumerate(rows):
            for nd in nodes:
                col = columns[f"f{nd.field}"]
                if col[i] is None:
                    col[i] = {}
                col[i][nd.index] = nd.value
        return cls(columns)


def iter_libffm(path: str) -> Iterator[tuple[int, list[Node]]]:
    """Yield ``(label, nodes)`` from a ``label field:index:value ...`` file."""
    with open(path, encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            tokens = line.split()
            if not tokens:
                continue
            try:
                y = int(tokens[0])
            except ValueError:
                raise MalformedInputError(
                    f"{path}:{lineno}: label must be an integer, "
                    f"got {tokens[0]!r}") from None
            nodes = []
            for tok in tokens[1:]:
                try:
                    fs, js, vs = tok.split(":")
                    nd = Node(int(fs), int(js), float(vs))
                except ValueError:
                    raise MalformedInputError(
                        f"{path}:{lineno}: bad node {tok!r}") from None
                if nd.field < 0 or nd.index < 0:
                    raise MalformedInputError(
                        f"{path}:{lineno}: negative field or index in {tok!r}")
                nodes.append(nd)
            yield y, nodes


def feature_columns(m: int) -> list[str]:
    """Column names :meth:`Table.read_libffm` gives to fields ``0..m-1``."""
    return [f"f{fld}" for fld in range(m)]


# ── CLI ──────────────────────────────────────────────────────────────────────


def _cli(argv=None):
    p = argparse.ArgumentParser(prog="fieldfm")
    sub = p.add_subparsers(dest="cmd")

    tr = sub.add_parser("train")
    tr.add_argument("train_file")
    tr.add_argument("-o", "--output", required=True)
    tr.add_argument("-p", "--valid", default=None)
    tr.add_argument("-l", "--lambda", dest="lambda_", type=float, default=0.0)
    tr.add_argument("-k",             type=int,   default=4)
    tr.add_argument("-t", "--iters",  type=int,   default=15)
    tr.add_argument("-r", "--eta",    type=float, default=0.1)
    tr.add_argument("-s", "--threads", type=int,  default=1)
    tr.add_argument("--seed",         type=int,   default=0)
    tr.add_argument("--norm",  action="store_true")
    tr.add_argument("--quiet", action="store_true")

    pr = sub.add_parser("predict")
    pr.add_argument("model")
    pr.add_argument("test_file")
    pr.add_argument("-o", "--output", default=None)
    pr.add_argument("-s", "--threads", type=int, default=1)

    args = p.parse_args(argv)
    if args.cmd == "train":
        params = Parameters(eta=args.eta, lambda_=args.lambda_,
                            nr_iters=args.iters, k=args.k,
                            nr_threads=args.threads, quiet=args.quiet,
                            normalization=args.norm, seed=args.seed)
        table = Table.read_libffm(args.train_file)
        m = len(table.column_names) - 1
        valid = (Table.read_libffm(args.valid, n_fields=m)
                 if args.valid else None)
        model = train(table, params, valid, features=feature_columns(m))
        if not save(model, args.output):
            print(f"cannot write model to {args.output}", file=sys.stderr)
            return 1
    elif args.cmd == "predict":
        model = load(args.model)
        if model is None:
            print(f"cannot load model from {args.model}", file=sys.stderr)
            return 1
        _set_threads(args.threads)
        table = Table.read_libffm(args.test_file, n_fields=model.m)
        probs = predict_table(table, model,
                              features=feature_columns(model.m))
        lines = "".join(f"{prob:.6f}\n" for prob in probs)
        if args.output:
            try:
                with open(args.output, "w", encoding="utf-8") as out:
                    out.write(lines)
            except OSError:
                print(f"cannot write predictions to {args.output}",
                      file=sys.stderr)
                return 1
        else:
            sys.stdout.write(lines)
        if len(probs):
            y = np.array(table.column("label")) > 0
            eps = 1e-15
            pc = np.clip(probs, eps, 1 - eps)
            ll = -np.mean(np.where(y, np.log(pc), np.log(1 - pc)))
            print(f"logloss = {ll:.5f}", file=sys.stderr)
    else:
        p.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(_cli())
