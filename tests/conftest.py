"""Shared fixtures: a small flights data model.

Tables (model order): airlines, airports, flights, planes, weather.

Keys:
    airlines.carrier, airports.faa, planes.tailnum, flights.flight_id
    flights.carrier -> airlines
    flights.origin  -> airports
    flights.tailnum -> planes

``weather`` has no keys and is not connected to any other table.
"""

import pandas as pd
import pytest

from dm_core.backends import FrameBackend, SQLBackend
from dm_core.keys import add_fk, add_pk
from dm_core.model import DataModel


def make_frames() -> dict[str, pd.DataFrame]:
    return {
        "airlines": pd.DataFrame({
            "carrier": ["AA", "DL", "UA"],
            "name": ["American Airlines Inc.", "Delta Air Lines Inc.", "United Air Lines Inc."],
        }),
        "airports": pd.DataFrame({
            "faa": ["JFK", "LGA", "EWR", "ATL"],
            "name": [
                "John F Kennedy Intl",
                "La Guardia",
                "Newark Liberty Intl",
                "Hartsfield Jackson Atlanta Intl",
            ],
        }),
        "flights": pd.DataFrame({
            "flight_id": [1, 2, 3, 4, 5, 6],
            "carrier": ["AA", "DL", "UA", "AA", "DL", "UA"],
            "tailnum": ["N1", "N2", "N3", "N1", "N4", "N3"],
            "origin": ["JFK", "LGA", "EWR", "JFK", "JFK", "LGA"],
            "dest": ["ATL", "ATL", "ATL", "LGA", "ATL", "EWR"],
            "month": [1, 1, 2, 2, 3, 3],
            "dep_delay": [10, -3, 25, 0, 40, 5],
            "arr_delay": [5, -8, 30, 2, 35, 0],
        }),
        "planes": pd.DataFrame({
            "tailnum": ["N1", "N2", "N3", "N4"],
            "seats": [180, 150, 200, 120],
            "engine": ["Turbo-fan", "Turbo-fan", "Turbo-jet", "Reciprocating"],
        }),
        "weather": pd.DataFrame({
            "origin": ["JFK", "JFK", "LGA"],
            "hour": [6, 7, 6],
            "temp": [39.0, 39.9, 41.0],
        }),
    }


def add_flight_keys(model: DataModel) -> DataModel:
    model = add_pk(model, "airlines", "carrier")
    model = add_pk(model, "airports", "faa")
    model = add_pk(model, "planes", "tailnum")
    model = add_pk(model, "flights", "flight_id")
    model = add_fk(model, "flights", "carrier", "airlines")
    model = add_fk(model, "flights", "origin", "airports")
    model = add_fk(model, "flights", "tailnum", "planes")
    return model


@pytest.fixture
def frames() -> dict[str, pd.DataFrame]:
    return make_frames()


@pytest.fixture
def backend(frames) -> FrameBackend:
    return FrameBackend(frames)


@pytest.fixture
def raw_model(backend) -> DataModel:
    """Key-less model over all flight tables."""
    return DataModel.from_backend(backend)


@pytest.fixture
def flights_model(raw_model) -> DataModel:
    """Flight tables with primary and foreign keys."""
    return add_flight_keys(raw_model)


@pytest.fixture
def sqlite_url(tmp_path, frames) -> str:
    """URL of a SQLite file holding the flight tables."""
    url = f"sqlite:///{tmp_path / 'flights.db'}"
    writer = SQLBackend(url)
    for name, frame in frames.items():
        writer.store(name, frame)
    writer.close()
    return url


@pytest.fixture
def sql_backend(sqlite_url):
    backend = SQLBackend(sqlite_url)
    yield backend
    backend.close()


@pytest.fixture
def sql_model(sql_backend) -> DataModel:
    """Flight tables with keys on the SQL backend."""
    return add_flight_keys(DataModel.from_backend(sql_backend, make_frames()))
