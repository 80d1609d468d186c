"""fieldfm data layer and CLI tests — Table, libffm reader, command line.

Usage:
    python3 -m pytest test_fieldfm_data.py -v
"""

import numpy as np
import pytest

from fieldfm import (
    MalformedInputError, Node, Table, _cli, _encode, feature_columns,
    iter_libffm, load, predict, train, Parameters,
)

LIBFFM_TRAIN = """\
1 0:0:1 1:2:1
0 0:1:1 1:2:1
1 0:0:1 1:3:1
0 0:1:1 1:3:1
"""


def _write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text)
    return str(path)


class TestTable:

    def test_basic_access(self):
        t = Table({"label": [1, 0], "f0": [{0: 1.0}, None]})
        assert len(t) == 2
        assert t.column_names == ["label", "f0"]
        assert t.column_index("f0") == 1
        assert t.column("label") == [1, 0]
        assert list(t.iter_rows()) == [[1, {0: 1.0}], [0, None]]

    def test_rows_are_restartable(self):
        t = Table({"a": [1, 2, 3]})
        assert list(t.iter_rows()) == list(t.iter_rows())

    def test_unknown_column(self):
        with pytest.raises(KeyError):
            Table({"a": [1]}).column_index("b")

    def test_ragged_columns(self):
        with pytest.raises(ValueError):
            Table({"a": [1, 2], "b": [1]})

    def test_empty(self):
        t = Table({})
        assert len(t) == 0
        assert list(t.iter_rows()) == []

    def test_from_records_fills_missing(self):
        t = Table.from_records([{"label": 1, "f0": {0: 1.0}},
                                {"label": 0, "f1": {2: 0.5}}])
        assert t.column_names == ["label", "f0", "f1"]
        assert t.column("f0") == [{0: 1.0}, None]
        assert t.column("f1") == [None, {2: 0.5}]


class TestLibffm:

    def test_iter_libffm(self, tmp_path):
        path = _write(tmp_path, "a.ffm", "1 0:3:1.5 2:7:1\n\n-1 1:4:2\n")
        rows = list(iter_libffm(path))
        assert rows == [(1, [Node(0, 3, 1.5), Node(2, 7, 1.0)]),
                        (-1, [Node(1, 4, 2.0)])]

    def test_read_libffm_columns(self, tmp_path):
        path = _write(tmp_path, "a.ffm", "1 0:3:1.5 2:7:1\n0 1:4:2 1:5:1\n")
        t = Table.read_libffm(path)
        assert t.column_names == ["label", "f0", "f1", "f2"]
        assert t.column("label") == [1, 0]
        assert t.column("f0") == [{3: 1.5}, None]
        assert t.column("f1") == [None, {4: 2.0, 5: 1.0}]
        assert t.column("f2") == [{7: 1.0}, None]

    def test_n_fields_pads_columns(self, tmp_path):
        path = _write(tmp_path, "a.ffm", "1 0:3:1\n")
        t = Table.read_libffm(path, n_fields=3)
        assert t.column_names == ["label"] + feature_columns(3)
        assert t.column("f2") == [None]

    @pytest.mark.parametrize("line", [
        "1.0 0:1:1", "x 0:1:1", "1 0:1", "1 a:1:1", "1 0:1:zz", "1 -1:1:1",
    ])
    def test_malformed_lines(self, tmp_path, line):
        path = _write(tmp_path, "bad.ffm", f"1 0:0:1\n{line}\n")
        with pytest.raises(MalformedInputError, match=":2:"):
            list(iter_libffm(path))


class TestEncode:

    def test_fields_follow_feature_order(self):
        t = Table({"label": [3, -2, 0],
                   "a": [{5: 1.0}, None, {1: 2.0, 2: 0.5}],
                   "b": [{7: 0.5}, {8: 1.0}, None]})
        rows = _encode(t, "label", ["b", "a"])
        assert len(rows) == 3
        assert rows.offsets.tolist() == [0, 2, 3, 5]
        assert rows.fields.tolist() == [0, 1, 0, 1, 1]
        assert rows.indices.tolist() == [7, 5, 8, 1, 2]
        assert rows.values.tolist() == [0.5, 1.0, 1.0, 2.0, 0.5]
        assert rows.labels.tolist() == [1.0, -1.0, -1.0]

    def test_without_target(self):
        t = Table({"a": [{0: 1.0}]})
        rows = _encode(t, None, ["a"])
        assert rows.labels is None
        assert rows.values.dtype == np.float32

    def test_unrepresentable_keys_become_out_of_range(self):
        t = Table({"label": [1], "a": [{2 ** 64: 3.0, 4: 1.0}]})
        rows = _encode(t, "label", ["a"])
        assert rows.indices.tolist() == [-1, 4]
        assert rows.values.tolist() == [3.0, 1.0]

    def test_error_names_row(self):
        t = Table({"label": [1, 1, 1], "a": [None, {0: 1}, "oops"]})
        with pytest.raises(MalformedInputError, match="row 2"):
            _encode(t, "label", ["a"])


class TestCLI:

    def test_train_then_predict(self, tmp_path, capsys):
        train_path = _write(tmp_path, "tr.ffm", LIBFFM_TRAIN * 20)
        valid_path = _write(tmp_path, "va.ffm", LIBFFM_TRAIN)
        model_path = str(tmp_path / "model.txt")
        out_path = str(tmp_path / "out.txt")

        assert _cli(["train", train_path, "-o", model_path, "-p", valid_path,
                     "-k", "4", "-t", "20", "-r", "0.1"]) == 0
        err = capsys.readouterr().err
        assert "va_logloss" in err

        model = load(model_path)
        assert (model.n, model.m, model.k) == (4, 2, 4)

        assert _cli(["predict", model_path, valid_path, "-o", out_path]) == 0
        probs = [float(x) for x in open(out_path).read().split()]
        assert len(probs) == 4
        assert probs[0] > 0.5 and probs[2] > 0.5
        assert probs[1] < 0.5 and probs[3] < 0.5
        assert "logloss" in capsys.readouterr().err

    def test_predict_matches_library(self, tmp_path):
        train_path = _write(tmp_path, "tr.ffm", LIBFFM_TRAIN * 5)
        model_path = str(tmp_path / "model.txt")
        out_path = str(tmp_path / "out.txt")
        assert _cli(["train", train_path, "-o", model_path, "-t", "3",
                     "--quiet", "--norm", "--seed", "4"]) == 0
        assert _cli(["predict", model_path, train_path, "-o", out_path]) == 0

        table = Table.read_libffm(train_path)
        ref = train(table, Parameters(nr_iters=3, quiet=True,
                                      normalization=True, seed=4),
                    features=feature_columns(2))
        probs = [float(x) for x in open(out_path).read().split()]
        assert probs[0] == pytest.approx(
            predict([Node(0, 0, 1.0), Node(1, 2, 1.0)], ref), abs=1e-6)

    def test_missing_model(self, tmp_path, capsys):
        path = _write(tmp_path, "te.ffm", LIBFFM_TRAIN)
        assert _cli(["predict", str(tmp_path / "none.txt"), path]) == 1
        assert "cannot load model" in capsys.readouterr().err

    def test_unwritable_output(self, tmp_path, capsys):
        path = _write(tmp_path, "tr.ffm", LIBFFM_TRAIN)
        out = str(tmp_path / "no" / "model.txt")
        assert _cli(["train", path, "-o", out, "-t", "1", "--quiet"]) == 1
        assert "cannot write model" in capsys.readouterr().err

    def test_unwritable_predictions(self, tmp_path, capsys):
        path = _write(tmp_path, "tr.ffm", LIBFFM_TRAIN)
        model_path = str(tmp_path / "model.txt")
        assert _cli(["train", path, "-o", model_path, "-t", "1",
                     "--quiet"]) == 0
        out = str(tmp_path / "no" / "preds.txt")
        assert _cli(["predict", model_path, path, "-o", out]) == 1
        assert "cannot write predictions" in capsys.readouterr().err

    def test_predict_to_stdout(self, tmp_path, capsys):
        path = _write(tmp_path, "tr.ffm", LIBFFM_TRAIN)
        model_path = str(tmp_path / "model.txt")
        assert _cli(["train", path, "-o", model_path, "-t", "1",
                     "--quiet"]) == 0
        assert _cli(["predict", model_path, path]) == 0
        lines = capsys.readouterr().out.split()
        assert len(lines) == 4
        assert all(0.0 <= float(x) <= 1.0 for x in lines)
