"""Tests for primary/foreign key management and constraint checking."""

import pandas as pd
import pytest

from dm_core.backends import FrameBackend
from dm_core.errors import (
    DuplicateForeignKeyError,
    FiltersPendingError,
    KeyInUseError,
    NoPrimaryKeyError,
    NotAllowedWhileZoomedError,
    NotUniqueError,
    PrimaryKeyExistsError,
    ReferentialIntegrityError,
    UnknownColumnError,
    UnknownForeignKeyError,
    UnknownTableError,
)
from dm_core.filtering import apply_filters, declare_filter, reset_filters
from dm_core.keys import (
    add_fk,
    add_pk,
    check_constraints,
    enumerate_pk_candidates,
    get_all_fks,
    get_all_pks,
    get_fks,
    get_pk,
    get_referencing_fks,
    has_fk,
    has_pk,
    rm_fk,
    rm_pk,
)
from dm_core.model import DataModel, ForeignKey
from dm_core.results import FkInfo
from dm_core.zoom import zoom_to


class TestPrimaryKeys:
    """Verify add_pk() / rm_pk() and their preconditions."""

    def test_add_pk(self, raw_model) -> None:
        model = add_pk(raw_model, "airports", "faa")
        assert get_pk(model, "airports") == "faa"
        assert has_pk(model, "airports")
        assert not has_pk(raw_model, "airports")

    def test_add_same_pk_is_noop(self, flights_model) -> None:
        assert add_pk(flights_model, "airports", "faa") is flights_model

    def test_unknown_column(self, raw_model) -> None:
        with pytest.raises(UnknownColumnError):
            add_pk(raw_model, "airports", "code")

    def test_unknown_table(self, raw_model) -> None:
        with pytest.raises(UnknownTableError):
            add_pk(raw_model, "nope", "id")

    def test_not_unique(self, raw_model) -> None:
        with pytest.raises(NotUniqueError):
            add_pk(raw_model, "flights", "carrier")

    def test_not_unique_skipped_without_check(self, raw_model) -> None:
        model = add_pk(raw_model, "flights", "carrier", check=False)
        assert get_pk(model, "flights") == "carrier"

    def test_missing_values_not_unique(self) -> None:
        model = DataModel.from_backend(FrameBackend({"t": pd.DataFrame({"id": [1, None, 3]})}))
        with pytest.raises(NotUniqueError):
            add_pk(model, "t", "id")

    def test_existing_pk_requires_force(self, raw_model) -> None:
        model = add_pk(raw_model, "airports", "faa")
        with pytest.raises(PrimaryKeyExistsError):
            add_pk(model, "airports", "name")
        assert get_pk(add_pk(model, "airports", "name", force=True), "airports") == "name"

    def test_force_blocked_by_references(self, flights_model) -> None:
        with pytest.raises(KeyInUseError, match="flights.origin"):
            add_pk(flights_model, "airports", "name", force=True)

    def test_rm_pk(self, raw_model) -> None:
        model = add_pk(raw_model, "airports", "faa")
        assert get_pk(rm_pk(model, "airports"), "airports") is None

    def test_rm_pk_without_pk(self, raw_model) -> None:
        with pytest.raises(NoPrimaryKeyError):
            rm_pk(raw_model, "airports")

    def test_rm_referenced_pk(self, flights_model) -> None:
        with pytest.raises(KeyInUseError):
            rm_pk(flights_model, "airports")

        model = rm_pk(flights_model, "airports", rm_referencing_fks=True)
        assert get_pk(model, "airports") is None
        assert not has_fk(model, "flights", "airports")
        assert has_fk(model, "flights", "airlines")

    def test_get_all_pks(self, flights_model) -> None:
        assert get_all_pks(flights_model) == {
            "airlines": "carrier",
            "airports": "faa",
            "flights": "flight_id",
            "planes": "tailnum",
        }

    def test_rejected_while_zoomed(self, flights_model) -> None:
        zoomed = zoom_to(flights_model, "weather")
        with pytest.raises(NotAllowedWhileZoomedError):
            add_pk(zoomed, "weather", "hour")
        with pytest.raises(NotAllowedWhileZoomedError):
            rm_pk(zoomed, "airports", rm_referencing_fks=True)


class TestPkCandidates:
    """Verify enumerate_pk_candidates()."""

    def test_candidates(self, raw_model) -> None:
        candidates = {c.column: c.candidate for c in enumerate_pk_candidates(raw_model, "planes")}
        assert candidates == {"tailnum": True, "seats": True, "engine": False}

    def test_no_candidate(self, raw_model) -> None:
        """A table where every column repeats yields an all-false list."""
        model = DataModel.from_backend(
            FrameBackend({"t": pd.DataFrame({"a": [1, 1], "b": ["x", "x"]})})
        )
        candidates = enumerate_pk_candidates(model, "t")
        assert [c.column for c in candidates] == ["a", "b"]
        assert not any(c.candidate for c in candidates)
        assert all(c.why for c in candidates)


class TestForeignKeys:
    """Verify add_fk() / rm_fk() and their preconditions."""

    def test_add_fk(self, raw_model) -> None:
        model = add_pk(raw_model, "airports", "faa")
        model = add_fk(model, "flights", "origin", "airports")
        assert has_fk(model, "flights", "airports")
        assert model.get("flights").foreign_keys == (ForeignKey(column="origin", parent="airports"),)

    def test_parent_without_pk(self, raw_model) -> None:
        with pytest.raises(NoPrimaryKeyError):
            add_fk(raw_model, "flights", "origin", "airports")

    def test_unknown_child_column(self, flights_model) -> None:
        with pytest.raises(UnknownColumnError):
            add_fk(flights_model, "flights", "airport", "airports")

    def test_duplicate(self, flights_model) -> None:
        with pytest.raises(DuplicateForeignKeyError):
            add_fk(flights_model, "flights", "origin", "airports")

    def test_second_fk_to_same_parent(self, flights_model) -> None:
        model = add_fk(flights_model, "flights", "dest", "airports")
        assert [fk.column for fk in model.get("flights").fks_to("airports")] == ["origin", "dest"]

    def test_referential_integrity_check(self, flights_model) -> None:
        """weather.origin values occur in airports.faa; airports.faa not in planes."""
        model = add_fk(flights_model, "weather", "origin", "airports", check=True)
        assert has_fk(model, "weather", "airports")
        with pytest.raises(ReferentialIntegrityError):
            add_fk(flights_model, "airports", "faa", "planes", check=True)

    def test_integrity_ignores_missing_values(self) -> None:
        backend = FrameBackend({
            "parent": pd.DataFrame({"id": [1, 2]}),
            "child": pd.DataFrame({"parent_id": [1, None, 2]}),
        })
        model = add_pk(DataModel.from_backend(backend), "parent", "id")
        model = add_fk(model, "child", "parent_id", "parent", check=True)
        assert has_fk(model, "child", "parent")

    def test_rm_fk(self, flights_model) -> None:
        model = rm_fk(flights_model, "flights", "origin", "airports")
        assert not has_fk(model, "flights", "airports")
        assert has_fk(flights_model, "flights", "airports")

    def test_rm_fk_all_columns(self, flights_model) -> None:
        """rm_fk() with column None removes every relation between the tables."""
        model = add_fk(flights_model, "flights", "dest", "airports")
        model = rm_fk(model, "flights", None, "airports")
        assert not has_fk(model, "flights", "airports")
        assert has_fk(model, "flights", "planes")

    def test_rm_missing_fk(self, flights_model) -> None:
        with pytest.raises(UnknownForeignKeyError):
            rm_fk(flights_model, "flights", "dest", "airports")
        with pytest.raises(UnknownForeignKeyError):
            rm_fk(flights_model, "weather", None, "airports")

    def test_fk_listing(self, flights_model) -> None:
        assert get_fks(flights_model, "flights")[1] == FkInfo(
            child_table="flights",
            child_column="origin",
            parent_table="airports",
            parent_column="faa",
        )
        assert [fk.child_column for fk in get_referencing_fks(flights_model, "planes")] == ["tailnum"]
        assert len(get_all_fks(flights_model)) == 3
        assert get_fks(flights_model, "weather") == []

    def test_rejected_while_zoomed(self, flights_model) -> None:
        zoomed = zoom_to(flights_model, "flights")
        with pytest.raises(NotAllowedWhileZoomedError):
            add_fk(zoomed, "flights", "dest", "airports")
        with pytest.raises(NotAllowedWhileZoomedError):
            rm_fk(zoomed, "flights", None, "airports")


class TestPendingFilters:
    """Verify that keys cannot change while a filter is pending."""

    @pytest.fixture
    def filtered(self, flights_model) -> DataModel:
        return declare_filter(flights_model, "airports", "faa == 'JFK'")

    def test_key_mutations_rejected(self, filtered) -> None:
        with pytest.raises(FiltersPendingError, match="add_pk"):
            add_pk(filtered, "weather", "temp")
        with pytest.raises(FiltersPendingError, match="rm_pk"):
            rm_pk(filtered, "planes", rm_referencing_fks=True)
        with pytest.raises(FiltersPendingError, match="add_fk"):
            add_fk(filtered, "flights", "dest", "airports")
        with pytest.raises(FiltersPendingError, match="rm_fk"):
            rm_fk(filtered, "flights", "origin", "airports")

    def test_allowed_after_apply_or_reset(self, filtered) -> None:
        assert has_fk(add_fk(reset_filters(filtered), "flights", "dest", "airports"), "flights", "airports")

        applied = apply_filters(filtered)
        assert get_pk(add_pk(applied, "weather", "temp"), "weather") == "temp"

    def test_read_access_allowed(self, filtered) -> None:
        assert get_pk(filtered, "airports") == "faa"
        assert enumerate_pk_candidates(filtered, "planes")[0].candidate


class TestCheckConstraints:
    """Verify check_constraints() and its report."""

    def test_valid_model(self, flights_model) -> None:
        report = check_constraints(flights_model)
        assert report.valid
        assert report.checked == 7
        assert report.format_report() == "All 7 key constraints hold"

    def test_violations_reported(self, raw_model) -> None:
        model = add_pk(raw_model, "airlines", "carrier")
        model = add_pk(model, "flights", "carrier", check=False)
        model = add_pk(model, "planes", "tailnum")
        model = add_fk(model, "airlines", "carrier", "planes")

        report = check_constraints(model)
        assert not report.valid
        assert report.problem_count == 2
        assert {(p.kind, p.table) for p in report.problems} == {("PK", "flights"), ("FK", "airlines")}

        text = report.format_report()
        assert "Key constraints violated (2 of 4)" in text
        assert "flights.carrier" in text
        assert "airlines.carrier -> planes" in text

    def test_checks_filtered_data(self, flights_model) -> None:
        """Constraints are checked on the rows left after filter propagation."""
        model = add_fk(flights_model, "weather", "hour", "flights")
        assert not check_constraints(model).valid

        filtered = declare_filter(model, "weather", "hour == 6")
        filtered = declare_filter(filtered, "flights", "flight_id == 6")
        assert check_constraints(filtered).valid

    def test_sql_backend(self, sql_model) -> None:
        assert check_constraints(sql_model).valid
        with pytest.raises(NotUniqueError):
            add_pk(sql_model, "flights", "origin")
