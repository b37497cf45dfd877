"""Tests for the pandas and SQL table backends."""

from unittest.mock import patch

import pandas as pd
import pytest
from sqlalchemy.sql import Select

from dm_core.backends import FrameBackend, SQLBackend, create_engine_pooled
from dm_core.backends.frame import evaluate
from dm_core.errors import ExpressionError
from dm_core.expressions import parse_expression


class TestFrameBackend:
    """Verify FrameBackend row operations."""

    def test_restrict_by_match_ignores_missing(self) -> None:
        backend = FrameBackend()
        left = pd.DataFrame({"k": ["a", None, "b", "c"]})
        right = pd.DataFrame({"k": ["a", "c", None]})
        result = backend.restrict_by_match(left, right, "k", "k")
        assert result["k"].tolist() == ["a", "c"]

    def test_filter_does_not_modify_input(self, frames) -> None:
        backend = FrameBackend(frames)
        flights = backend.get_table("flights")
        result = backend.filter_rows(flights, parse_expression("month == 1"))
        assert len(result) == 2
        assert len(flights) == 6

    def test_comparison_with_missing_is_unknown(self) -> None:
        frame = pd.DataFrame({"x": [1.0, None, 3.0]})
        assert evaluate(parse_expression("x > 0"), frame).tolist() == [True, pd.NA, True]
        assert evaluate(parse_expression("not x > 0"), frame).tolist() == [False, pd.NA, False]
        assert evaluate(parse_expression("x > 0 or x is None"), frame).tolist() == [True, True, True]
        assert evaluate(parse_expression("x is None"), frame).tolist() == [False, True, False]

    def test_constant_predicate_broadcasts(self) -> None:
        backend = FrameBackend()
        frame = pd.DataFrame({"x": [1, 2]})
        assert len(backend.filter_rows(frame, parse_expression("True"))) == 2
        assert len(backend.filter_rows(frame, parse_expression("1 == 2"))) == 0

    def test_aggregate_outside_summarise(self) -> None:
        with pytest.raises(ExpressionError):
            evaluate(parse_expression("mean(x)"), pd.DataFrame({"x": [1]}))

    def test_summarise_distinct_groups(self, frames) -> None:
        backend = FrameBackend(frames)
        result = backend.summarise(backend.get_table("flights"), ["origin"], {})
        assert sorted(result["origin"]) == ["EWR", "JFK", "LGA"]

    def test_n_distinct(self, frames) -> None:
        backend = FrameBackend(frames)
        result = backend.summarise(
            backend.get_table("flights"),
            ["carrier"],
            {"planes": parse_expression("n_distinct(tailnum)")},
        )
        assert result["planes"].tolist() == [1, 2, 1]

    def test_get_unknown_table(self) -> None:
        with pytest.raises(KeyError):
            FrameBackend().get_table("nope")


class TestSQLBackend:
    """Verify SQLBackend against SQLite."""

    def test_list_and_reflect(self, sql_backend) -> None:
        assert sql_backend.list_tables() == ["airlines", "airports", "flights", "planes", "weather"]
        assert sql_backend.column_names(sql_backend.get_table("planes")) == ["tailnum", "seats", "engine"]

    def test_get_unknown_table(self, sql_backend) -> None:
        with pytest.raises(KeyError):
            sql_backend.get_table("nope")

    def test_filter_is_lazy(self, sql_backend) -> None:
        """Composing handles builds a Select; nrow runs the query."""
        flights = sql_backend.get_table("flights")
        jfk = sql_backend.filter_rows(flights, parse_expression("origin == 'JFK'"))
        early = sql_backend.filter_rows(jfk, parse_expression("month < 3"))
        assert isinstance(early, Select)
        assert sql_backend.nrow(early) == 2

    def test_restrict_by_match(self, sql_backend) -> None:
        airports = sql_backend.filter_rows(
            sql_backend.get_table("airports"), parse_expression("faa in ['LGA', 'EWR']")
        )
        flights = sql_backend.restrict_by_match(sql_backend.get_table("flights"), airports, "origin", "faa")
        assert sorted(sql_backend.collect(flights)["flight_id"]) == [2, 3, 6]

    def test_uniqueness_and_subset(self, sql_backend) -> None:
        flights = sql_backend.get_table("flights")
        airports = sql_backend.get_table("airports")
        assert sql_backend.is_unique_column(flights, "flight_id")
        assert not sql_backend.is_unique_column(flights, "origin")
        assert sql_backend.is_subset(flights, airports, "origin", "faa")
        assert sql_backend.is_subset(flights, airports, "dest", "faa")
        assert not sql_backend.is_subset(airports, flights, "faa", "origin")

    def test_select_and_mutate(self, sql_backend) -> None:
        flights = sql_backend.get_table("flights")
        selected = sql_backend.select_columns(flights, {"id": "flight_id", "delay": "dep_delay"})
        mutated = sql_backend.mutate(
            selected,
            {"late": parse_expression("delay > 15"), "delay": parse_expression("delay * 60")},
        )

        frame = sql_backend.collect(mutated)
        assert list(frame.columns) == ["id", "delay", "late"]
        assert frame["delay"].tolist() == [600, -180, 1500, 0, 2400, 300]

    def test_summarise(self, sql_backend) -> None:
        result = sql_backend.summarise(
            sql_backend.get_table("flights"),
            ["origin"],
            {"n": parse_expression("n()"), "mean_delay": parse_expression("mean(dep_delay)")},
        )
        frame = sql_backend.collect(result)
        assert frame["origin"].tolist() == ["EWR", "JFK", "LGA"]
        assert frame["n"].tolist() == [1, 3, 2]

    def test_store_replaces_table(self, sql_backend) -> None:
        handle = sql_backend.store("planes", pd.DataFrame({"tailnum": ["N9"]}))
        assert sql_backend.nrow(handle) == 1
        assert sql_backend.column_names(handle) == ["tailnum"]


class TestMissingValueLogic:
    """Verify both backends keep the same rows when values are missing."""

    @pytest.fixture(params=["frame", "sql"])
    def backend_with_gaps(self, request, tmp_path):
        frame = pd.DataFrame({"id": [1, 2, 3], "x": [5.0, None, 20.0], "tag": ["a", None, "b"]})
        if request.param == "frame":
            yield FrameBackend({"t": frame})
            return
        backend = SQLBackend(f"sqlite:///{tmp_path / 'gaps.db'}")
        backend.store("t", frame)
        yield backend
        backend.close()

    @pytest.mark.parametrize(
        ("predicate", "expected"),
        [
            ("x > 10", [3]),
            ("not x > 10", [1]),
            ("x != 5", [3]),
            ("not (x != 5)", [1]),
            ("not x in [5.0]", [3]),
            ("not tag in ['a']", [3]),
            ("x > 10 or x is None", [2, 3]),
            ("not (x > 10 and tag == 'b')", [1]),
            ("not (x > 10 or tag == 'b')", [1]),
        ],
    )
    def test_same_rows(self, backend_with_gaps, predicate: str, expected: list[int]) -> None:
        backend = backend_with_gaps
        rows = backend.filter_rows(backend.get_table("t"), parse_expression(predicate))
        assert sorted(backend.collect(rows)["id"]) == expected


class TestCreateEnginePooled:
    """Verify URL normalization and pool defaults."""

    def test_postgres_url_normalized(self) -> None:
        with patch("dm_core.backends.sql.create_engine") as mock_create:
            create_engine_pooled("postgres://u:p@localhost:5432/flights")

        url = mock_create.call_args[0][0]
        assert url.startswith("postgresql+psycopg://")
        assert url.endswith("?connect_timeout=10")
        assert mock_create.call_args[1]["pool_size"] == 5
        assert mock_create.call_args[1]["pool_pre_ping"] is True

    def test_kwargs_override_defaults(self) -> None:
        with patch("dm_core.backends.sql.create_engine") as mock_create:
            create_engine_pooled("postgresql://u:p@localhost/db?sslmode=require", pool_size=1)

        assert mock_create.call_args[0][0].endswith("sslmode=require&connect_timeout=10")
        assert mock_create.call_args[1]["pool_size"] == 1

    def test_sqlite_has_no_pool_defaults(self) -> None:
        with patch("dm_core.backends.sql.create_engine") as mock_create:
            create_engine_pooled("sqlite:///flights.db")

        mock_create.assert_called_once_with("sqlite:///flights.db")

    def test_backend_accepts_engine(self, sql_backend) -> None:
        backend = SQLBackend(sql_backend.engine)
        assert backend.engine is sql_backend.engine
